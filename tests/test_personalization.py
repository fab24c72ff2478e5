import asyncio
import base64
import copy
import json

import httpx
import pytest

from src.storefront.config import TargetConfig
from src.storefront.personalization import (
    PersonalizationClient,
    RequestContext,
    TargetClient,
    build_mbox_cookie,
    extract_slot_analytics,
    parse_mbox_cookie,
    proposition_id,
    scope_details_id,
)

from conftest import HERO_MBOX, ORG_ID, REDIRECT_MBOX


@pytest.fixture
def target_conf():
    return TargetConfig(client_code="acme", org_id=ORG_ID, property_token="prop-1")


@pytest.fixture
def client(vendor, target_conf):
    vendor.mboxes = {"homepage-hero": HERO_MBOX, "redirect": REDIRECT_MBOX}
    return PersonalizationClient(TargetClient(target_conf, vendor.client()))


@pytest.fixture
def context():
    return RequestContext(url="http://shop.test/?q=1", user_agent="Mozilla/5.0", cookies={})


def test_proposition_ids_match_known_encoding():
    expected_prop = "AT:" + base64.b64encode(b'{"activityId":"12345","experienceId":"1"}').decode()
    expected_scope = "AT:" + base64.b64encode(b'{"activityId":"12345","experienceId":"1","targetType":"0"}').decode()
    assert proposition_id("12345", "1") == expected_prop
    assert scope_details_id("12345", "1") == expected_scope


def test_proposition_ids_deterministic():
    assert proposition_id("1", "2") == proposition_id("1", "2")
    assert scope_details_id(1, 0) == scope_details_id(1, 0)
    # Experience "0" is a real experience, not an absent one
    assert proposition_id("777", "0") is not None


@pytest.mark.parametrize("activity, experience", [(None, "1"), ("1", None), (None, None), ("", "1")])
def test_proposition_ids_need_both_ids(activity, experience):
    assert proposition_id(activity, experience) is None
    assert scope_details_id(activity, experience) is None


def test_extract_slot_analytics():
    slot = extract_slot_analytics(HERO_MBOX)
    assert slot.mbox_name == "homepage-hero"
    assert slot.activity_id == "12345"
    assert slot.activity_name == "Hero AB"
    assert slot.experience_id == "1"
    assert slot.experience_name == "Experience B"
    assert slot.offer_id == "999"
    assert slot.offer_name == "Holiday Hero"
    assert slot.event_token == "evt-hero"
    assert slot.tnta == "12345:1:0|2"
    assert slot.proposition_id == proposition_id("12345", "1")
    assert slot.scope_details_id == scope_details_id("12345", "1")


def test_extract_slot_analytics_without_tokens():
    slot = extract_slot_analytics({"name": "empty", "options": [{"content": "<p>hi</p>"}]})
    assert slot.activity_id is None
    assert slot.proposition_id is None
    assert slot.scope_details_id is None
    assert slot.tnta is None
    assert slot.response_tokens == {}


def test_demo_mode_returns_fallbacks_without_network(vendor, context):
    client = PersonalizationClient(None)
    result = asyncio.run(client.get_offers(context, ["homepage-hero", "products-banner"]))
    assert result.is_demo
    assert result.analytics == []
    assert set(result.offers) == {"homepage-hero", "products-banner"}
    for offer in result.offers.values():
        assert offer.content is None
        assert offer.is_demo
    assert vendor.requests == []


def test_create_without_credentials_is_demo(vendor):
    assert TargetClient.create(TargetConfig(), vendor.client()) is None
    assert TargetClient.create(TargetConfig(client_code="acme"), vendor.client()) is None


def test_successful_offer_uses_first_option(client, context):
    result = asyncio.run(client.get_offers(context, ["homepage-hero"]))
    offer = result.offers["homepage-hero"]
    assert not result.is_demo
    assert result.error is None
    assert offer.content["headline"] == "Holiday Sale"
    assert not offer.is_redirect
    assert offer.analytics.activity_id == "12345"
    assert [a.mbox_name for a in result.analytics] == ["homepage-hero"]
    assert result.raw_analytics_details == [{"pe": "tnt", "tnta": "12345:1:0|2"}]


def test_redirect_offer(client, context):
    result = asyncio.run(client.get_offers(context, ["redirect"]))
    offer = result.offers["redirect"]
    assert offer.type == "redirect"
    assert offer.redirect_url == "https://x"
    assert offer.is_redirect
    assert offer.content is None
    assert offer.analytics.tnta == "777:0:0|32767"


def test_missing_content_falls_back_to_none(vendor, client, context):
    mbox = copy.deepcopy(HERO_MBOX)
    del mbox["options"][0]["content"]
    vendor.mboxes["homepage-hero"] = mbox
    result = asyncio.run(client.get_offers(context, ["homepage-hero"]))
    assert result.offers["homepage-hero"].content is None


def test_unreturned_slot_reads_as_empty(client, context):
    result = asyncio.run(client.get_offers(context, ["not-in-activity"]))
    assert result.offers == {}
    assert result.get("not-in-activity").content is None


def test_delivery_request_shape(vendor, client):
    context = RequestContext(url="http://shop.test/about", user_agent="UA/1", cookies={}, ecid="ECID-1")
    asyncio.run(client.get_offers(context, ["homepage-hero", "redirect", "homepage-hero"]))

    (request,) = vendor.calls("target")
    assert request.method == "POST"
    assert request.url.host == "acme.tt.omtrdc.net"
    assert request.url.path == "/rest/v1/delivery"
    assert request.url.params["client"] == "acme"
    assert request.url.params["sessionId"]

    body = json.loads(request.content)
    assert body["context"] == {"channel": "web", "address": {"url": "http://shop.test/about"}, "userAgent": "UA/1"}
    assert body["execute"]["mboxes"] == [{"name": "homepage-hero", "index": 0}, {"name": "redirect", "index": 1}]
    assert body["experienceCloud"]["analytics"]["logging"] == "client_side"
    assert body["property"] == {"token": "prop-1"}
    assert body["id"] == {"marketingCloudVisitorId": "ECID-1"}


def test_session_cookie_round_trip(vendor, client):
    future = 4_000_000_000
    cookies = {"mbox": f"session#sess-1#{future}|PC#tnt-old.35_0#{future}"}
    context = RequestContext(url="http://shop.test/", cookies=cookies)
    result = asyncio.run(client.get_offers(context, ["homepage-hero"]))

    (request,) = vendor.calls("target")
    assert request.url.params["sessionId"] == "sess-1"
    assert json.loads(request.content)["id"]["tntId"] == "tnt-old.35_0"

    assert result.session_id == "sess-1"
    assert result.target_cookie.name == "mbox"
    assert "session#sess-1#" in result.target_cookie.value
    assert "PC#tnt-abc.35_0#" in result.target_cookie.value


@pytest.mark.parametrize("failure", ["status", "network", "timeout"])
def test_vendor_failure_degrades_to_error_fallback(vendor, client, context, failure):
    if failure == "status":
        vendor.delivery_status = 500
    elif failure == "network":
        vendor.delivery_error = httpx.ConnectError("edge down")
    else:
        vendor.delivery_error = httpx.ReadTimeout("slow edge")

    result = asyncio.run(client.get_offers(context, ["homepage-hero"]))
    offer = result.offers["homepage-hero"]
    assert offer.content is None
    assert offer.error
    assert result.analytics == []
    assert result.error
    assert result.target_cookie is None


def test_parse_mbox_cookie_drops_expired():
    value = "session#s1#100|PC#t1#300"
    assert parse_mbox_cookie(value, now=50) == {"session": "s1", "PC": "t1"}
    assert parse_mbox_cookie(value, now=200) == {"PC": "t1"}
    assert parse_mbox_cookie("garbage", now=0) == {}
    assert parse_mbox_cookie(None) == {}


def test_build_mbox_cookie(target_conf):
    cookie = build_mbox_cookie("s1", "t1", target_conf, now=1000)
    assert cookie.value == f"session#s1#{1000 + 1860}|PC#t1#{1000 + 63_244_800}"
    assert cookie.max_age == 63_244_800

    cookie = build_mbox_cookie("s1", None, target_conf, now=1000)
    assert cookie.value == "session#s1#2860"
    assert cookie.max_age == 1860


@pytest.mark.parametrize("body", [
    {"execute": {"mboxes": "oops"}},
    {"execute": {"mboxes": ["not-a-mbox"]}},
    {"execute": "oops"},
    {"execute": {"mboxes": [{"name": "homepage-hero", "options": [{"responseTokens": ["x"]}]}]}},
    {"execute": {"mboxes": [{"name": "homepage-hero", "options": ["not-an-option"]}]}},
    {"execute": {"mboxes": [{"name": "redirect", "options": [{"type": "redirect", "content": {"url": "https://x"}}]}]}},
])
def test_malformed_body_degrades_to_error_fallback(vendor, client, context, body):
    vendor.delivery_body = body
    result = asyncio.run(client.get_offers(context, ["homepage-hero", "redirect"]))
    assert result.error
    assert result.analytics == []
    for offer in result.offers.values():
        assert offer.content is None
        assert offer.error
        assert not offer.is_redirect


def test_non_object_id_is_ignored(vendor, client, context):
    vendor.delivery_body = {"id": "not-an-object", "execute": {"mboxes": [HERO_MBOX]}}
    result = asyncio.run(client.get_offers(context, ["homepage-hero"]))
    assert result.error is None
    assert result.offers["homepage-hero"].content["headline"] == "Holiday Sale"
    assert "PC#" not in result.target_cookie.value
