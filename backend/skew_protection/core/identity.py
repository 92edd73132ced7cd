"""Request identity signals: deployment hint, document and crawler detection, cookie"""

import re
from typing import Optional
from starlette.requests import Request
from starlette.responses import Response
from skew_protection.core.config import Settings

# Common crawler / link-preview user agents
BOT_PATTERN = re.compile(
    r"bot|crawl|spider|slurp|bingpreview|facebookexternalhit|embedly|quora link preview|"
    r"whatsapp|telegrambot|discordbot|lighthouse|headlesschrome|pingdom|uptimerobot",
    re.IGNORECASE,
)


def get_identity_hint(request: Request, settings: Settings) -> Optional[str]:
    """Deployment hint in priority order: explicit header, query parameter, cookie"""
    return (
        request.headers.get(settings.identity_header)
        or request.query_params.get(settings.identity_query_param)
        or request.cookies.get(settings.cookie_name)
        or None
    )


def get_cookie_version(request: Request, settings: Settings) -> Optional[str]:
    return request.cookies.get(settings.cookie_name) or None


def is_bot(request: Request) -> bool:
    user_agent = request.headers.get("user-agent", "")
    return bool(user_agent) and bool(BOT_PATTERN.search(user_agent))


def is_document_request(request: Request, settings: Settings) -> bool:
    """HTML navigation requests; never asset or API sub-requests"""
    if request.method not in ("GET", "HEAD"):
        return False
    dest = request.headers.get("sec-fetch-dest")
    if dest:
        return dest == "document"
    path = request.url.path
    if path.startswith(settings.assets_prefix) or path.startswith("/_skew") or path.startswith("/api/"):
        return False
    return "text/html" in request.headers.get("accept", "")


def is_api_request(request: Request) -> bool:
    path = request.url.path
    return path.startswith("/api/") and not path.startswith("/_skew")


def set_identity_cookie(response: Response, value: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.cookie_name,
        value=value,
        max_age=settings.cookie_max_age,
        path="/",
        samesite=settings.cookie_same_site,
        secure=settings.cookie_secure,
        httponly=settings.cookie_http_only,
    )
