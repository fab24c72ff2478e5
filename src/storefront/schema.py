from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Product:
    """
    A catalog record. Immutable and loaded once at process start.
    emoji/color are presentation only.
    """

    id: int
    name: str
    description: str
    price: Decimal
    category: str
    sku: str
    stock: int
    features: Tuple[str, ...] = ()
    emoji: str = ""
    color: str = ""


@dataclass(slots=True)
class VisitorIdentity:
    """
    Identifiers for one request.

    ecid is long-lived (AMCV cookie), sdid is minted per personalization
    call, server_state is mirrored to the client-side Visitor library.
    """

    ecid: Optional[str] = None
    sdid: Optional[str] = None
    server_state: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SlotAnalytics:
    """
    A4T metadata extracted from a single mbox.
    """

    mbox_name: str
    activity_id: Optional[str] = None
    activity_name: Optional[str] = None
    experience_id: Optional[str] = None
    experience_name: Optional[str] = None
    offer_id: Optional[str] = None
    offer_name: Optional[str] = None
    response_tokens: Dict[str, Any] = field(default_factory=dict)
    event_token: Optional[str] = None
    proposition_id: Optional[str] = None
    scope_details_id: Optional[str] = None
    analytics_payload: Optional[Dict[str, Any]] = None

    @property
    def tnta(self) -> Optional[str]:
        if not self.analytics_payload:
            return None
        return self.analytics_payload.get("tnta") or None

    def to_dict(self) -> Dict[str, Any]:
        """Camel-cased view handed to templates / client-side scripts."""
        return {
            "mboxName": self.mbox_name,
            "activityId": self.activity_id,
            "activityName": self.activity_name,
            "experienceId": self.experience_id,
            "experienceName": self.experience_name,
            "offerId": self.offer_id,
            "offerName": self.offer_name,
            "responseTokens": self.response_tokens,
            "eventToken": self.event_token,
            "propositionId": self.proposition_id,
            "scopeDetailsId": self.scope_details_id,
            "analyticsPayload": self.analytics_payload,
        }


@dataclass(slots=True)
class OfferResult:
    """
    Outcome for one slot: renderable content or a redirect instruction.
    """

    content: Any = None
    type: str = "content"
    redirect_url: Optional[str] = None
    analytics: Optional[SlotAnalytics] = None
    is_demo: bool = False
    error: bool = False

    @property
    def is_redirect(self) -> bool:
        return self.type == "redirect" and bool(self.redirect_url)


@dataclass(frozen=True, slots=True)
class TargetCookie:
    name: str
    value: str
    max_age: int


@dataclass(slots=True)
class OffersResponse:
    offers: Dict[str, OfferResult]
    analytics: List[SlotAnalytics] = field(default_factory=list)
    is_demo: bool = False
    error: Optional[str] = None
    target_cookie: Optional[TargetCookie] = None
    session_id: Optional[str] = None
    raw_analytics_details: Optional[List[Dict[str, Any]]] = None

    def get(self, slot_name: str) -> OfferResult:
        """Return the slot's result, or an empty one if Target omitted it."""
        return self.offers.get(slot_name) or OfferResult()
