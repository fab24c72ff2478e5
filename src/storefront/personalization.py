import base64
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from src.storefront.config import TargetConfig
from src.storefront.metrics import TARGET_LATENCY, TARGET_REQUESTS
from src.storefront.schema import OfferResult, OffersResponse, SlotAnalytics, TargetCookie

logger = logging.getLogger(__name__)

TARGET_COOKIE_NAME = "mbox"
PROPOSITION_PREFIX = "AT:"


class TargetDeliveryError(Exception):
    """Raised when the Delivery API answers with something unusable."""


@dataclass(slots=True)
class RequestContext:
    """The parts of an inbound page request that Target needs to see."""

    url: str
    user_agent: str = ""
    cookies: Mapping[str, str] = field(default_factory=dict)
    ecid: Optional[str] = None


def _encode_id(payload: Dict[str, Any]) -> str:
    # Compact separators keep the bytes identical to JSON.stringify output
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return PROPOSITION_PREFIX + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _present(value: Any) -> bool:
    return value is not None and value != ""


def proposition_id(activity_id: Any, experience_id: Any) -> Optional[str]:
    """``AT:`` + base64 of ``{"activityId", "experienceId"}``, or None."""
    if not (_present(activity_id) and _present(experience_id)):
        return None
    return _encode_id({"activityId": activity_id, "experienceId": experience_id})


def scope_details_id(activity_id: Any, experience_id: Any) -> Optional[str]:
    """Same as proposition_id with a ``targetType`` discriminator of "0"."""
    if not (_present(activity_id) and _present(experience_id)):
        return None
    return _encode_id({"activityId": activity_id, "experienceId": experience_id, "targetType": "0"})


def extract_slot_analytics(mbox: Mapping[str, Any]) -> SlotAnalytics:
    """
    Build SlotAnalytics from one ``execute.mboxes[]`` entry.

    Only the first option is considered. Response tokens supply the
    activity/experience/offer fields; the mbox-level analytics payload
    carries the A4T ``tnta`` token.
    """
    analytics = SlotAnalytics(mbox_name=mbox.get("name", ""))

    options = mbox.get("options") or []
    option = options[0] if options else None
    if option:
        analytics.event_token = option.get("eventToken") or None
        tokens = option.get("responseTokens")
        if tokens:
            analytics.response_tokens = dict(tokens)
            analytics.activity_id = tokens.get("activity.id")
            analytics.activity_name = tokens.get("activity.name")
            analytics.experience_id = tokens.get("experience.id")
            analytics.experience_name = tokens.get("experience.name")
            analytics.offer_id = tokens.get("offer.id")
            analytics.offer_name = tokens.get("offer.name")
            analytics.proposition_id = proposition_id(analytics.activity_id, analytics.experience_id)
            analytics.scope_details_id = scope_details_id(analytics.activity_id, analytics.experience_id)

    payload = (mbox.get("analytics") or {}).get("payload")
    if payload:
        analytics.analytics_payload = dict(payload)

    return analytics


def offer_from_mbox(mbox: Mapping[str, Any], analytics: SlotAnalytics) -> OfferResult:
    """Single-option policy: anything after ``options[0]`` is ignored."""
    options = mbox.get("options") or []
    option = options[0] if options else {}
    content = option.get("content") or None

    if option.get("type") == "redirect":
        if content is not None and not isinstance(content, str):
            raise TargetDeliveryError(f"Redirect offer for {mbox.get('name')} has no URL")
        return OfferResult(type="redirect", redirect_url=content, analytics=analytics)
    return OfferResult(content=content, analytics=analytics)


def parse_mbox_cookie(value: Optional[str], now: Optional[float] = None) -> Dict[str, str]:
    """
    Parse ``session#<id>#<expiry>|PC#<tntId>#<expiry>`` into ``{name: value}``.
    Expired or malformed entries are dropped.
    """
    if not value:
        return {}
    now = time.time() if now is None else now
    entries = {}
    for part in value.split("|"):
        pieces = part.split("#")
        if len(pieces) != 3 or not pieces[1]:
            continue
        name, val, expires = pieces
        try:
            if float(expires) <= now:
                continue
        except ValueError:
            continue
        entries[name] = val
    return entries


def build_mbox_cookie(session_id: str, tnt_id: Optional[str], conf: TargetConfig, now: Optional[float] = None) -> TargetCookie:
    now = int(time.time() if now is None else now)
    parts = [f"session#{session_id}#{now + conf.session_max_age}"]
    max_age = conf.session_max_age
    if tnt_id:
        parts.append(f"PC#{tnt_id}#{now + conf.pc_max_age}")
        max_age = max(max_age, conf.pc_max_age)
    return TargetCookie(name=TARGET_COOKIE_NAME, value="|".join(parts), max_age=max_age)


class TargetClient:
    """
    Thin transport over the Target Delivery API (server-side decisioning).

    Owns the ``mbox`` session cookie round-trip; everything about what an
    offer *means* lives in PersonalizationClient.
    """

    cookie_name = TARGET_COOKIE_NAME

    def __init__(self, conf: TargetConfig, http_client: httpx.AsyncClient):
        self.conf = conf
        self.http = http_client

    @classmethod
    def create(cls, conf: TargetConfig, http_client: httpx.AsyncClient) -> Optional["TargetClient"]:
        """Returns None (demo mode) when credentials are missing."""
        if not conf.enabled:
            logger.warning("Adobe Target credentials not configured. Running in demo mode.")
            return None
        logger.info("Adobe Target client initialized")
        return cls(conf, http_client)

    @property
    def delivery_url(self) -> str:
        return f"https://{self.conf.client_code}.tt.omtrdc.net/rest/v1/delivery"

    def build_request(self, context: RequestContext, mbox_names: Sequence[str], tnt_id: Optional[str] = None) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "requestId": uuid.uuid4().hex,
            "context": {
                "channel": "web",
                "address": {"url": context.url},
                "userAgent": context.user_agent,
            },
            "execute": {
                "mboxes": [{"name": name, "index": index} for index, name in enumerate(mbox_names)],
            },
            "experienceCloud": {
                "analytics": {"logging": "client_side"},
            },
        }
        ids = {}
        if tnt_id:
            ids["tntId"] = tnt_id
        if context.ecid:
            ids["marketingCloudVisitorId"] = context.ecid
        if ids:
            request["id"] = ids
        if self.conf.property_token:
            request["property"] = {"token": self.conf.property_token}
        return request

    async def deliver(self, context: RequestContext, mbox_names: Sequence[str]) -> Tuple[Dict[str, Any], TargetCookie, str]:
        """
        Execute one delivery call.

        Returns ``(response_json, session_cookie, session_id)``.
        Raises httpx.HTTPError or TargetDeliveryError.
        """
        session = parse_mbox_cookie(context.cookies.get(self.cookie_name))
        session_id = session.get("session") or uuid.uuid4().hex
        tnt_id = session.get("PC")

        body = self.build_request(context, mbox_names, tnt_id=tnt_id)
        params = {"client": self.conf.client_code, "sessionId": session_id}

        start_time = time.perf_counter()
        response = await self.http.post(self.delivery_url, params=params, json=body, timeout=self.conf.timeout)
        TARGET_LATENCY.observe(time.perf_counter() - start_time)

        if response.status_code < 200 or response.status_code >= 300:
            raise TargetDeliveryError(f"Delivery API returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise TargetDeliveryError(f"Delivery API returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise TargetDeliveryError("Delivery API returned a non-object body")

        ids = data.get("id")
        if isinstance(ids, dict) and ids.get("tntId"):
            tnt_id = ids["tntId"]
        cookie = build_mbox_cookie(session_id, tnt_id, self.conf)
        return data, cookie, session_id


def collect_mboxes(data: Mapping[str, Any]) -> Tuple[Dict[str, OfferResult], List[SlotAnalytics], List[Dict[str, Any]]]:
    """
    Turn ``execute.mboxes`` into offers, analytics and raw A4T payloads.
    Raises TargetDeliveryError when the body does not have the expected shape.
    """
    offers: Dict[str, OfferResult] = {}
    analytics: List[SlotAnalytics] = []
    raw_details: List[Dict[str, Any]] = []

    try:
        mboxes = (data.get("execute") or {}).get("mboxes") or []
        if not isinstance(mboxes, list):
            raise TargetDeliveryError("execute.mboxes is not a list")
        for mbox in mboxes:
            name = mbox.get("name")
            if not name:
                continue
            slot_analytics = extract_slot_analytics(mbox)
            offers[name] = offer_from_mbox(mbox, slot_analytics)
            analytics.append(slot_analytics)
            if slot_analytics.analytics_payload:
                raw_details.append(slot_analytics.analytics_payload)
    except (AttributeError, TypeError, ValueError, IndexError) as e:
        raise TargetDeliveryError(f"Malformed delivery response: {e}") from e

    return offers, analytics, raw_details


def _fallback(slot_names: Sequence[str], **flags) -> Dict[str, OfferResult]:
    return {name: OfferResult(content=None, **flags) for name in slot_names}


class PersonalizationClient:
    """
    Resolves named content slots (mboxes) to offers plus A4T metadata.

    Never raises: an unconfigured client yields demo fallbacks, a failed
    vendor call yields error fallbacks, and the page renders defaults.
    """

    def __init__(self, target: Optional[TargetClient]):
        self.target = target

    @property
    def is_configured(self) -> bool:
        return self.target is not None

    async def get_offers(self, context: RequestContext, slot_names: Sequence[str]) -> OffersResponse:
        slot_names = list(dict.fromkeys(slot_names))

        if self.target is None:
            TARGET_REQUESTS.labels(outcome="demo").inc()
            return OffersResponse(offers=_fallback(slot_names, is_demo=True), is_demo=True)

        try:
            data, cookie, session_id = await self.target.deliver(context, slot_names)
            offers, analytics, raw_details = collect_mboxes(data)
        except (httpx.HTTPError, TargetDeliveryError) as e:
            TARGET_REQUESTS.labels(outcome="error").inc()
            logger.error(f"Error fetching Target offers: {e}")
            return OffersResponse(offers=_fallback(slot_names, error=True), error=str(e) or type(e).__name__)

        TARGET_REQUESTS.labels(outcome="success").inc()
        logger.debug(f"Target returned {len(offers)} of {len(slot_names)} requested mboxes")

        return OffersResponse(
            offers=offers,
            analytics=analytics,
            target_cookie=cookie,
            session_id=session_id,
            raw_analytics_details=raw_details or None,
        )
