"""
auth/cookies.py -- Cookie directives.

The engine never touches a framework response. Operations take the inbound
cookies as a plain mapping and return a list of Cookie directives; the route
layer hands those to apply_cookies() together with its response object.

Attributes:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  samesite="lax": sent on top-level navigations (the OAuth callback and the
      verification link are both cross-site GETs), not on cross-site POST.
  secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    max_age: int
    expires: datetime | None = None
    httponly: bool = True
    secure: bool = False
    samesite: str = "lax"
    path: str = "/"

    @property
    def is_blank(self) -> bool:
        return self.max_age <= 0


def blank_cookie(name: str, secure: bool = False) -> Cookie:
    """Return a directive that makes the browser drop the cookie immediately."""
    return Cookie(name=name, value="", max_age=0, expires=_EPOCH, secure=secure)


def apply_cookies(response, cookies: list[Cookie]) -> None:
    """Write every directive onto a Starlette/FastAPI response.

    Later directives for the same name win in the browser, so the order of
    the list is preserved.
    """
    for cookie in cookies:
        response.set_cookie(
            cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            expires=cookie.expires,
            path=cookie.path,
            secure=cookie.secure,
            httponly=cookie.httponly,
            samesite=cookie.samesite,
        )
