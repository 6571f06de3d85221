"""
Visitor-facing link route.

GET /jump-to-checkout/{token} fills the shopper's cart and 302s to checkout.
Failures render a small HTML page instead of the JSON envelope.
"""
from __future__ import annotations

import html
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from config.settings import settings
from checkout_links.api.deps import get_resolution_engine
from checkout_links.errors import CheckoutLinkError, NoProductsAvailable
from checkout_links.services.resolution import ResolutionEngine
from checkout_links.services.secret_key import get_secret_key
from checkout_links.services.visitor_session import (
    LINK_COOKIE, SESSION_COOKIE, SESSION_TTL, new_session_id, sign_link_cookie,
)

router = APIRouter(tags=["Checkout Links"])
logger = logging.getLogger(__name__)

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="robots" content="noindex">
<title>{title}</title>
<style>
body {{ font-family: -apple-system, BlinkMacSystemFont, sans-serif; max-width: 560px;
       margin: 80px auto; padding: 0 20px; color: #333; line-height: 1.5; }}
h1 {{ font-size: 1.4em; }}
ul {{ padding-left: 1.2em; }}
</style>
</head>
<body>
<h1>{title}</h1>
<p>{message}</p>
{details}
</body>
</html>"""


def render_error_page(exc: CheckoutLinkError) -> HTMLResponse:
    title = "Error"
    details = ""
    if isinstance(exc, NoProductsAvailable):
        title = "Products Not Available"
        if exc.skipped:
            items = "".join(f"<li>{html.escape(s.label())}</li>" for s in exc.skipped)
            details = f"<ul>{items}</ul>"
    page = _PAGE.format(
        title=html.escape(title),
        message=html.escape(exc.message),
        details=details,
    )
    return HTMLResponse(content=page, status_code=exc.http_status)


def _set_cookies(
    response: Response,
    session_id: str,
    new_session: bool,
    link_id: Optional[int],
    secret: str,
) -> None:
    if new_session:
        response.set_cookie(
            SESSION_COOKIE, session_id,
            max_age=SESSION_TTL, httponly=True, samesite="lax",
            secure=settings.COOKIE_SECURE, domain=settings.COOKIE_DOMAIN,
        )
    if link_id:
        response.set_cookie(
            LINK_COOKIE, sign_link_cookie(link_id, secret),
            max_age=settings.LINK_COOKIE_MAX_AGE, httponly=True, samesite="lax",
            secure=settings.COOKIE_SECURE, domain=settings.COOKIE_DOMAIN,
        )


@router.get(f"/{settings.LINK_PATH_PREFIX}/{{token:path}}", include_in_schema=False)
async def jump_to_checkout(
    token: str,
    request: Request,
    engine: ResolutionEngine = Depends(get_resolution_engine),
    secret: str = Depends(get_secret_key),
):
    """Replace the shopper's cart with the link's selection and go to checkout."""
    session_id = request.cookies.get(SESSION_COOKIE)
    new_session = not session_id
    if new_session:
        session_id = new_session_id()

    try:
        result = await engine.resolve(token, session_id)
    except NoProductsAvailable as exc:
        response = render_error_page(exc)
        _set_cookies(response, session_id, new_session, exc.link_id, secret)
        return response
    except CheckoutLinkError as exc:
        logger.info("Checkout link rejected: %s", exc.code)
        response = render_error_page(exc)
        _set_cookies(response, session_id, new_session, None, secret)
        return response

    response = RedirectResponse(url=result.redirect_url, status_code=302)
    _set_cookies(response, session_id, new_session, result.link_id, secret)
    return response
