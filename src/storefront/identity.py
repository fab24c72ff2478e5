import logging
import random
import re
import time
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from src.storefront.config import IdentityConfig
from src.storefront.cookies import PendingCookie
from src.storefront.metrics import ECID_MINTS
from src.storefront.schema import VisitorIdentity

logger = logging.getLogger(__name__)

# AMCV cookie format: MCMID|<ecid>|other|values
_MCMID_PATTERN = re.compile(r"MCMID\|([^|]+)")

DEFAULT_SDID_CONSUMER = "target-global-mbox"


def amcv_cookie_name(org_id: str) -> str:
    """Name of the identity cookie for ``org_id`` (``@`` percent-encoded)."""
    return "AMCV_" + org_id.replace("@", "%40")


def ecid_from_cookie_value(value: Optional[str]) -> Optional[str]:
    """Extract the ECID from an AMCV cookie value, or None if malformed."""
    if not value:
        return None
    match = _MCMID_PATTERN.search(value)
    return match.group(1) if match else None


def format_sdid_param(sdid: str, org_id: str, timestamp: Optional[int] = None) -> str:
    """Value of the ``adobe_mc_sdid`` query parameter for cross-page handoff."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"SDID={sdid}|MCORGID={org_id}|TS={ts}"


def parse_sdid_param(value: Optional[str]) -> Optional[str]:
    """Recover the SDID from an ``adobe_mc_sdid`` value. Bare ids pass through."""
    if not value:
        return None
    for part in value.split("|"):
        key, sep, val = part.partition("=")
        if sep and key == "SDID":
            return val or None
    if "=" not in value:
        return value
    return None


class VisitorState:
    """
    Server-side stand-in for the Visitor ID library state of one org.

    Generates supplemental data ids (SDIDs). One instance lives for one
    request. Different consumers share the current SDID; a consumer that
    asks again rotates it, so every consumer sees a given SDID at most once.
    """

    def __init__(self, org_id: str, rng: Optional[random.Random] = None):
        self.org_id = org_id
        self._rng = rng or random.Random()
        self._current: Optional[str] = None
        self._consumed: Dict[str, bool] = {}
        self._last: Optional[str] = None
        self._last_consumed: Dict[str, bool] = {}

    def _new_id(self) -> str:
        high = self._rng.getrandbits(64)
        low = self._rng.getrandbits(64)
        return f"{high:016X}-{low:016X}"

    def get_supplemental_data_id(self, consumer_id: str) -> str:
        if self._current is None or consumer_id in self._consumed:
            self._last, self._last_consumed = self._current, self._consumed
            self._current = self._new_id()
            self._consumed = {}
        self._consumed[consumer_id] = True
        return self._current

    def get_state(self) -> Dict[str, Any]:
        """State blob to hand to the client-side library."""
        return {
            self.org_id: {
                "sdid": {
                    "supplementalDataIDCurrent": self._current or "",
                    "supplementalDataIDCurrentConsumed": dict(self._consumed),
                    "supplementalDataIDLast": self._last or "",
                    "supplementalDataIDLastConsumed": dict(self._last_consumed),
                }
            }
        }


class IdentityResolver:
    """
    Resolves the visitor's ECID from the AMCV cookie, minting one through
    demdex when the cookie is absent or unreadable.
    """

    def __init__(self, org_id: Optional[str], http_client: httpx.AsyncClient, conf: Optional[IdentityConfig] = None):
        self.org_id = org_id
        self.http = http_client
        self.conf = conf or IdentityConfig()

    @property
    def cookie_name(self) -> Optional[str]:
        return amcv_cookie_name(self.org_id) if self.org_id else None

    def get_ecid(self, cookies: Mapping[str, str]) -> Optional[str]:
        """ECID from the inbound AMCV cookie, without any network call."""
        if not self.org_id:
            return None
        return ecid_from_cookie_value(cookies.get(self.cookie_name))

    async def mint_ecid(self) -> Optional[str]:
        """Ask demdex for a fresh ECID. Returns None on any failure."""
        params = {
            "d_visid_ver": self.conf.visitor_version,
            "d_fieldgroup": "MC",
            "d_rtbd": "json",
            "d_ver": "2",
            "d_orgid": self.org_id,
            "d_nsid": "0",
        }
        logger.info("Generating new ECID via demdex...")
        try:
            response = await self.http.get(self.conf.endpoint, params=params, timeout=self.conf.timeout)
            if response.status_code < 200 or response.status_code >= 300:
                logger.warning(f"demdex returned HTTP {response.status_code}")
                ECID_MINTS.labels(outcome="failed").inc()
                return None
            ecid = response.json().get("d_mid")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"ECID minting failed: {e}")
            ECID_MINTS.labels(outcome="failed").inc()
            return None

        if not ecid:
            logger.warning("demdex response did not include d_mid")
            ECID_MINTS.labels(outcome="failed").inc()
            return None

        ECID_MINTS.labels(outcome="minted").inc()
        logger.info(f"Generated ECID: {ecid}")
        return str(ecid)

    async def get_or_create_ecid(self, cookies: Mapping[str, str]) -> Tuple[Optional[str], Optional[PendingCookie]]:
        """
        Returns ``(ecid, cookie_to_set)``. The cookie is only produced when a
        new ECID was minted; an existing cookie value is never replaced.
        """
        existing = self.get_ecid(cookies)
        if existing:
            return existing, None

        if not self.org_id:
            return None, None

        ecid = await self.mint_ecid()
        if not ecid:
            return None, None

        cookie = PendingCookie(
            name=self.cookie_name,
            value=f"MCMID|{ecid}",
            max_age=self.conf.cookie_max_age,
            path="/",
        )
        return ecid, cookie

    async def resolve(self, cookies: Mapping[str, str], mbox_name: Optional[str] = None) -> Tuple[Optional[VisitorIdentity], Optional[PendingCookie]]:
        """
        Build the VisitorIdentity for this request.

        Returns ``(None, None)`` when no org id is configured. A missing ECID
        is not fatal: the identity is returned with ``ecid=None`` and
        analytics stitching is simply skipped downstream.
        """
        if not self.org_id:
            return None, None

        ecid, cookie = await self.get_or_create_ecid(cookies)

        visitor = VisitorState(self.org_id)
        sdid = visitor.get_supplemental_data_id(mbox_name or DEFAULT_SDID_CONSUMER)
        identity = VisitorIdentity(ecid=ecid, sdid=sdid, server_state=visitor.get_state())

        logger.debug(f"Visitor payload: ecid={ecid} sdid={sdid} mbox={mbox_name}")
        return identity, cookie
