import json

import httpx
import pytest

from src.storefront.config import AnalyticsConfig, StorefrontConfig, TargetConfig

ORG_ID = "ABC123@AdobeOrg"
AMCV_COOKIE = "AMCV_ABC123%40AdobeOrg"

HERO_MBOX = {
    "index": 0,
    "name": "homepage-hero",
    "options": [
        {
            "type": "json",
            "content": {
                "headline": "Holiday Sale",
                "subheadline": "Everything 20% off",
                "buttonText": "Shop Now",
                "backgroundColor": "red",
            },
            "eventToken": "evt-hero",
            "responseTokens": {
                "activity.id": "12345",
                "activity.name": "Hero AB",
                "experience.id": "1",
                "experience.name": "Experience B",
                "offer.id": "999",
                "offer.name": "Holiday Hero",
            },
        },
        {"type": "json", "content": {"headline": "Ignored second option"}},
    ],
    "analytics": {"payload": {"pe": "tnt", "tnta": "12345:1:0|2"}},
}

REDIRECT_MBOX = {
    "index": 0,
    "name": "redirect",
    "options": [
        {
            "type": "redirect",
            "content": "https://x",
            "responseTokens": {
                "activity.id": "777",
                "activity.name": "About Redirect",
                "experience.id": "0",
                "experience.name": "Redirect Experience",
                "offer.id": "555",
            },
        }
    ],
    "analytics": {"payload": {"pe": "tnt", "tnta": "777:0:0|32767"}},
}


class FakeVendor:
    """
    Stands in for the Target edge, demdex and the Analytics tracking server.
    Every request is recorded so tests can assert exact call counts.
    """

    def __init__(self):
        self.requests = []
        self.mboxes = {}
        self.tnt_id = "tnt-abc.35_0"
        self.delivery_status = 200
        self.delivery_error = None
        self.delivery_body = None
        self.demdex_body = {"d_mid": "ECID-MINTED-1"}
        self.demdex_status = 200
        self.demdex_error = None
        self.beacon_status = 200
        self.beacon_error = None

    def kind(self, request: httpx.Request) -> str:
        host = request.url.host
        if host.endswith("tt.omtrdc.net"):
            return "target"
        if host == "dpm.demdex.net":
            return "demdex"
        return "beacon"

    def calls(self, kind: str):
        return [r for r in self.requests if self.kind(r) == kind]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind = self.kind(request)

        if kind == "target":
            if self.delivery_error:
                raise self.delivery_error
            if self.delivery_body is not None:
                return httpx.Response(self.delivery_status, json=self.delivery_body)
            body = json.loads(request.content)
            names = [m["name"] for m in body["execute"]["mboxes"]]
            mboxes = [self.mboxes[n] for n in names if n in self.mboxes]
            return httpx.Response(self.delivery_status, json={
                "status": self.delivery_status,
                "requestId": body["requestId"],
                "id": {"tntId": self.tnt_id},
                "execute": {"mboxes": mboxes},
            })

        if kind == "demdex":
            if self.demdex_error:
                raise self.demdex_error
            return httpx.Response(self.demdex_status, json=self.demdex_body)

        if self.beacon_error:
            raise self.beacon_error
        return httpx.Response(self.beacon_status, text="")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def make_config(target: bool = True, analytics: bool = True, forward_attribution: bool = True) -> StorefrontConfig:
    target_conf = TargetConfig(client_code="acme", org_id=ORG_ID, property_token="prop-1") if target else TargetConfig()
    analytics_conf = AnalyticsConfig(tracking_server="acme.sc.omtrdc.net", rsid="acmeprod") if analytics else AnalyticsConfig()
    return StorefrontConfig(target=target_conf, analytics=analytics_conf, forward_attribution=forward_attribution)


@pytest.fixture
def vendor():
    return FakeVendor()
