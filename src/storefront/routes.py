import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from src.storefront.catalog import PRODUCTS, get_product, related_products
from src.storefront.cookies import PendingCookie, apply_cookies
from src.storefront.identity import format_sdid_param, parse_sdid_param
from src.storefront.metrics import PAGE_REQUESTS
from src.storefront.personalization import TARGET_COOKIE_NAME, RequestContext
from src.storefront.schema import OffersResponse, SlotAnalytics, VisitorIdentity
from src.storefront.services import Services, get_services
from src.utils.validation import Validator

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

HOME_SLOT = "homepage-hero"
PRODUCTS_SLOT = "products-banner"
REDIRECT_SLOT = "redirect"

DEFAULT_HERO = {
    "headline": "Welcome to Our Site",
    "subheadline": "Discover amazing products and services",
    "buttonText": "Get Started",
    "backgroundColor": "green",
}

DEFAULT_BANNER = {
    "message": "Check out our latest products!",
    "highlight": "New Arrivals",
}

# Query params carrying attribution across a redirect offer
ATTRIBUTION_FIELDS = (
    ("at_activityId", "activity_id"),
    ("at_activityName", "activity_name"),
    ("at_experienceId", "experience_id"),
    ("at_experienceName", "experience_name"),
    ("at_offerId", "offer_id"),
)
TNTA_PARAM = "at_tnta"
SDID_PARAM = "adobe_mc_sdid"
SESSION_PARAM = "mboxSession"


class PageState:
    """Per-request personalization outcome shared by the page handlers."""

    def __init__(self, offers: OffersResponse, identity: Optional[VisitorIdentity], cookies: List[Optional[PendingCookie]]):
        self.offers = offers
        self.identity = identity
        self.cookies = cookies

    @property
    def analytics(self) -> List[SlotAnalytics]:
        return self.offers.analytics


async def personalize(request: Request, services: Services, slot_name: str) -> PageState:
    """
    Fetch offers for one slot, then resolve the visitor identity.
    Never raises; failures arrive as fallback offers / missing identity.
    """
    context = RequestContext(
        url=str(request.url),
        user_agent=request.headers.get("user-agent", ""),
        cookies=request.cookies,
        ecid=services.identity.get_ecid(request.cookies),
    )
    offers = await services.personalization.get_offers(context, [slot_name])

    identity, amcv_cookie = await services.identity.resolve(request.cookies, slot_name)

    target_cookie = None
    if offers.target_cookie is not None:
        tc = offers.target_cookie
        target_cookie = PendingCookie(name=tc.name, value=tc.value, max_age=tc.max_age)

    return PageState(offers, identity, [target_cookie, amcv_cookie])


def _content_or_default(content: Any, default: Dict[str, Any]) -> Dict[str, Any]:
    if isinstance(content, Mapping) and content:
        return dict(content)
    return default


def _render(request: Request, template: str, context: Dict[str, Any], state: Optional[PageState] = None, status_code: int = 200):
    page = {
        "target_analytics": [],
        "visitor_state": None,
        "is_demo": False,
        "target_debug": {
            "mboxCookieName": TARGET_COOKIE_NAME,
            "mboxCookie": request.cookies.get(TARGET_COOKIE_NAME),
        },
    }
    if state is not None:
        page["target_analytics"] = [a.to_dict() for a in state.analytics]
        page["visitor_state"] = state.identity.server_state if state.identity else None
        page["is_demo"] = state.offers.is_demo
    page.update(context)

    response = templates.TemplateResponse(request, template, page, status_code=status_code)
    if state is not None:
        apply_cookies(response, state.cookies)
    return response


def attribution_params(slot: Optional[SlotAnalytics], identity: Optional[VisitorIdentity], org_id: Optional[str], session_id: Optional[str]) -> Dict[str, str]:
    """Query params that let the landing page rebuild slot analytics."""
    params: Dict[str, str] = {}
    if slot is not None:
        for param, attr in ATTRIBUTION_FIELDS:
            value = getattr(slot, attr)
            if value not in (None, ""):
                params[param] = str(value)
        if slot.tnta:
            params[TNTA_PARAM] = slot.tnta
    if identity is not None and identity.sdid and org_id:
        params[SDID_PARAM] = format_sdid_param(identity.sdid, org_id)
    if session_id:
        params[SESSION_PARAM] = session_id
    return params


def with_query_params(url: str, params: Mapping[str, str]) -> str:
    """Append ``params`` to ``url``, keeping its existing query and fragment."""
    if not params:
        return url
    parts = urlsplit(url)
    # The vendor-supplied query is kept byte for byte
    extra = urlencode(dict(params))
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def landing_analytics(query: Mapping[str, str]) -> Tuple[SlotAnalytics, Optional[str], Optional[str], bool]:
    """
    Rebuild a pseudo SlotAnalytics from redirect query params.

    Returns ``(slot, sdid, session_id, is_redirect_landing)``.
    """
    slot = SlotAnalytics(mbox_name=REDIRECT_SLOT)
    for param, attr in ATTRIBUTION_FIELDS:
        setattr(slot, attr, Validator.sanitize_string(query.get(param)))

    tnta = Validator.sanitize_string(query.get(TNTA_PARAM))
    if tnta:
        slot.analytics_payload = {"pe": "tnt", "tnta": tnta}

    sdid = parse_sdid_param(Validator.sanitize_string(query.get(SDID_PARAM)))
    session_id = Validator.sanitize_string(query.get(SESSION_PARAM))
    return slot, sdid, session_id, bool(slot.activity_id or sdid)


@router.get("/")
async def home(request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    PAGE_REQUESTS.labels(page="home").inc()
    state = await personalize(request, services, HOME_SLOT)

    services.beacons.dispatch(background_tasks, state.analytics, "sst:home", state.identity)

    content = state.offers.get(HOME_SLOT).content
    return _render(request, "index.html", {
        "title": "Home",
        "hero": _content_or_default(content, DEFAULT_HERO),
        "hero_html": content if isinstance(content, str) else None,
    }, state)


@router.get("/products")
async def product_list(request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    PAGE_REQUESTS.labels(page="products").inc()
    state = await personalize(request, services, PRODUCTS_SLOT)

    services.beacons.dispatch(background_tasks, state.analytics, "sst:products", state.identity)

    return _render(request, "products.html", {
        "title": "Products",
        "banner": _content_or_default(state.offers.get(PRODUCTS_SLOT).content, DEFAULT_BANNER),
        "products": PRODUCTS,
    }, state)


@router.get("/products/{product_id}")
async def product_detail(request: Request, product_id: str):
    PAGE_REQUESTS.labels(page="product_detail").inc()
    parsed = Validator.parse_product_id(product_id)
    product = get_product(parsed) if parsed is not None else None

    if product is None:
        return _render(request, "404.html", {"title": "Product Not Found"}, status_code=404)

    return _render(request, "product_detail.html", {
        "title": product.name,
        "product": product,
        "related_products": related_products(product.id),
    })


@router.get("/about")
async def about(request: Request, background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    PAGE_REQUESTS.labels(page="about").inc()
    state = await personalize(request, services, REDIRECT_SLOT)

    offer = state.offers.get(REDIRECT_SLOT)
    if not offer.is_redirect:
        return _render(request, "about.html", {"title": "About Us"}, state)

    services.beacons.dispatch(background_tasks, state.analytics, "sst:about", state.identity)

    url = offer.redirect_url
    if services.config.forward_attribution:
        params = attribution_params(offer.analytics, state.identity, services.config.org_id, state.offers.session_id)
        url = with_query_params(url, params)

    logger.info(f"Redirect offer for {REDIRECT_SLOT}: {url}")
    response = RedirectResponse(url, status_code=302)
    return apply_cookies(response, state.cookies)


@router.get("/landingpage")
async def landing_page(request: Request):
    PAGE_REQUESTS.labels(page="landingpage").inc()
    slot, sdid, session_id, is_redirect_landing = landing_analytics(request.query_params)

    return _render(request, "landingpage.html", {
        "title": "Special Offer",
        "landing_analytics": slot.to_dict(),
        "target_analytics": [slot.to_dict()] if is_redirect_landing else [],
        "sdid": sdid,
        "mbox_session": session_id,
        "is_redirect_landing": is_redirect_landing,
    })
