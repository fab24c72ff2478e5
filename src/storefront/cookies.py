from dataclasses import dataclass
from typing import Iterable, Optional

from starlette.responses import Response


@dataclass(frozen=True, slots=True)
class PendingCookie:
    """
    A cookie a service wants set on the outgoing response.

    Services return these instead of touching the response object, because
    the handler only decides at the end whether it renders or redirects.
    """

    name: str
    value: str
    max_age: Optional[int] = None
    path: str = "/"


def apply_cookies(response: Response, cookies: Iterable[Optional[PendingCookie]]) -> Response:
    """Set every non-empty pending cookie on ``response`` and return it."""
    for cookie in cookies:
        if cookie is None:
            continue
        response.set_cookie(
            key=cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            path=cookie.path,
        )
    return response
