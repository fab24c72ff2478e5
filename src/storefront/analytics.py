import logging
from typing import Iterable, Optional
from urllib.parse import urlencode

import httpx
from fastapi import BackgroundTasks

from src.storefront.config import AnalyticsConfig
from src.storefront.metrics import A4T_HITS
from src.storefront.schema import SlotAnalytics, VisitorIdentity

logger = logging.getLogger(__name__)


class BeaconSender:
    """
    Sends A4T display hits to the Analytics Data Insertion endpoint.

    Hits are best-effort telemetry: one attempt per slot, no retries,
    failures are logged and counted but never reach the page handler.
    """

    def __init__(self, conf: AnalyticsConfig, http_client: httpx.AsyncClient):
        self.conf = conf
        self.http = http_client

    def build_display_hit_url(self, slot: SlotAnalytics, page_name: str, identity: Optional[VisitorIdentity]) -> Optional[str]:
        """
        Returns the beacon URL, or None when the hit must not be sent
        (analytics unconfigured, slot without tnta, or no ECID).
        """
        if not self.conf.enabled:
            logger.warning("A4T: missing tracking server or RSID configuration")
            return None

        tnta = slot.tnta
        if not tnta:
            logger.warning(f"A4T: no TNTA token available for {slot.mbox_name}")
            return None

        if identity is None or not identity.ecid:
            logger.warning("A4T: no ECID available, display hit not sent")
            return None

        activity = slot.activity_id if slot.activity_id not in (None, "") else "unknown"
        params = {
            "pe": "tnt",
            "tnta": tnta,
            "mid": identity.ecid,
            "pageName": page_name,
            "events": self.conf.display_event,
            "c2": f"server-side-a4t|{slot.mbox_name}|{activity}",
        }
        # SDID stitches this hit to the Target decision
        if identity.sdid:
            params["sdid"] = identity.sdid

        return f"https://{self.conf.tracking_server}/b/ss/{self.conf.rsid}/0?{urlencode(params)}"

    async def send_display_hit(self, slot: SlotAnalytics, page_name: str, identity: Optional[VisitorIdentity]) -> bool:
        """Fire one display hit. Never raises; returns True if the hit landed."""
        url = self.build_display_hit_url(slot, page_name, identity)
        if url is None:
            A4T_HITS.labels(outcome="skipped").inc()
            return False

        try:
            logger.info(f"A4T: sending display hit: {url}")
            response = await self.http.get(url, timeout=self.conf.beacon_timeout)
        except httpx.HTTPError as e:
            A4T_HITS.labels(outcome="failed").inc()
            logger.error(f"A4T: error sending display hit: {e}")
            return False

        if 200 <= response.status_code < 300:
            A4T_HITS.labels(outcome="sent").inc()
            logger.info(f"A4T: display hit sent for {slot.mbox_name}")
            return True

        A4T_HITS.labels(outcome="failed").inc()
        logger.error(f"A4T: display hit failed: HTTP {response.status_code}")
        return False

    def dispatch(self, background_tasks: BackgroundTasks, analytics: Iterable[SlotAnalytics], page_name: str, identity: Optional[VisitorIdentity]) -> int:
        """
        Schedule a detached display hit for every slot carrying a tnta token.
        The hits run after the response is produced. Returns how many were
        scheduled.
        """
        scheduled = 0
        for slot in analytics:
            if not slot.tnta:
                continue
            background_tasks.add_task(self.send_display_hit, slot, page_name, identity)
            scheduled += 1
        return scheduled
