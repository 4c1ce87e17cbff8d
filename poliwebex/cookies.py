import asyncio
import json
import logging

from playwright.async_api import Page

from .context import RunContext
from .errors import CookieExtractionError, RequestFailed
from .http import HttpClient
from .login import LoginStateMachine
from .settings import Settings

logger = logging.getLogger(__name__)

GRACE_SECONDS = 5


async def _find_cookie(page: Page, name: str, url: str):
    jar = await page.context.cookies(url)
    for cookie in jar:
        if cookie["name"] == name:
            return cookie
    return None


async def _extract_cookie(page: Page, name: str, url: str, grace: float) -> str:
    cookie = await _find_cookie(page, name, url)
    if cookie is None:
        await asyncio.sleep(grace)
        cookie = await _find_cookie(page, name, url)
    if cookie is None:
        raise CookieExtractionError(name)
    return f"{name}={cookie['value']}"


async def extract_auth_cookie(page: Page, settings: Settings, grace: float = GRACE_SECONDS) -> str:
    """Read the Webex session ticket from the browser cookie jar."""
    return await _extract_cookie(page, settings.AUTH_COOKIE_NAME, settings.home_url, grace)


async def extract_listing_session_cookie(
    page: Page, settings: Settings, listing_url: str, grace: float = GRACE_SECONDS
) -> str:
    """Read the listing system session id for the site ``listing_url`` lives on."""
    return await _extract_cookie(page, settings.LISTING_COOKIE_NAME, listing_url, grace)


def is_valid_cookie_body(body: str) -> bool:
    try:
        return isinstance(json.loads(body), dict)
    except ValueError:
        return False


async def check_cookie_validity(http: HttpClient, settings: Settings, cookie: str) -> bool:
    headers = {"Cookie": cookie, "Accept": "application/json"}
    try:
        body = await http.get_text(settings.probe_url(), headers, accept=(200, 403, 404))
    except RequestFailed as e:
        logger.debug(f"Cookie probe failed: {e}")
        return False
    return is_valid_cookie_body(body)


async def get_cookies(ctx: RunContext, http: HttpClient) -> str:
    """Return a working session cookie, logging in only when the cached one is stale."""
    cached = ctx.config.get("cookie")
    if cached and await check_cookie_validity(http, ctx.settings, cached):
        logger.info("Saved session cookie is still valid, skipping login.")
        return cached

    credentials = ctx.credentials()
    page = await ctx.browser.page()
    await LoginStateMachine(ctx, credentials).run(page)
    cookie = await extract_auth_cookie(page, ctx.settings)
    logger.info("Got required authentication cookies.")
    ctx.config.update(cookie=cookie)
    await ctx.browser.close()
    return cookie
