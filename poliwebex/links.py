"""Lecture links hidden behind the institutional recordings listing.

Course pages on the LMS point to the recordings listing, whose "show all"
page has a table of links. Each of those answers with a tiny HTML page
that redirects to the Webex recording through ``location.href='...'``.
"""

import logging
import re
from typing import Iterable, Mapping, Optional
from urllib.parse import parse_qs, urljoin, urlparse

from playwright.async_api import Error as PlaywrightError, Page

from .context import RunContext
from .cookies import extract_listing_session_cookie
from .errors import ItemUnresolved, LoginTimeout, RequestFailed
from .http import HttpClient
from .login import LoginState, LoginStateMachine, on_host
from .settings import Settings

logger = logging.getLogger(__name__)

REDIRECT_RE = re.compile(r"location\.href='(.*?)';")
RECORDING_ANCHORS = "table a[href]"


def partition_links(urls: Iterable[str], settings: Settings) -> tuple[list[str], list[str]]:
    """Split user input into (direct lecture links, institutional listing links)."""
    direct, listing = [], []
    for url in urls:
        url = url.strip()
        if not url:
            continue
        host = urlparse(url).hostname or ""
        if any(allowed in host for allowed in settings.LISTING_HOSTS):
            listing.append(url)
        else:
            direct.append(url)
    return direct, listing


def extract_rcid(url: str) -> Optional[str]:
    """Value of the ``RCID`` query parameter, whatever its case."""
    for key, values in parse_qs(urlparse(url).query).items():
        if key.lower() == "rcid" and values:
            return values[0]
    return None


async def get_redirect_url(http: HttpClient, url: str, headers: Optional[Mapping[str, str]] = None) -> str:
    try:
        body = await http.get_text(url, headers)
    except RequestFailed as e:
        raise ItemUnresolved(url, f"redirect request failed: {e}") from e
    m = REDIRECT_RE.search(body)
    if not m:
        raise ItemUnresolved(url, "no redirect found in page")
    return m.group(1)


class LinkExtractor:
    def __init__(self, ctx: RunContext, http: HttpClient) -> None:
        self.ctx = ctx
        self.http = http
        self.settings = ctx.settings

    async def extract(self, listing_urls: list[str]) -> list[str]:
        """Lecture URLs behind every listing link, in order, without duplicates.

        A listing link that cannot be walked is reported and skipped.
        """
        page = await self.ctx.browser.page()
        lectures: list[str] = []
        for url in listing_urls:
            logger.info(f"Extracting lecture links from {url}")
            try:
                found = await self._lectures_from_listing(page, url)
            except LoginTimeout as e:
                logger.warning(f"Timed out while reading {url}, skipping it: {e}")
                self.ctx.mark_unresolved(url)
                continue
            except PlaywrightError as e:
                # timeouts included
                logger.warning(f"Browser failed on {url}, skipping it: {e}")
                self.ctx.mark_unresolved(url)
                continue
            except ItemUnresolved as e:
                logger.warning(f"Could not read {url}, skipping it: {e.reason}")
                self.ctx.mark_unresolved(url)
                continue
            logger.info(f"Found {len(found)} lectures in {url}")
            for lecture in found:
                if lecture not in lectures:
                    lectures.append(lecture)
        return lectures

    async def _goto(self, page: Page, url: str) -> None:
        host = urlparse(url).hostname or ""
        await page.goto(url, wait_until="networkidle", timeout=self.ctx.scaled(60000))
        if on_host(page.url, self.settings.IDP_HOST):
            logger.info(f"{host} asks for the institutional login...")
            machine = LoginStateMachine(self.ctx, self.ctx.credentials())
            await machine.run(page, start=LoginState.AWAIT_FEDERATION_REDIRECT, final_host=host)

    async def _href(self, page: Page, selector: str, what: str) -> str:
        anchor = await page.wait_for_selector(selector, timeout=self.ctx.scaled(15000))
        href = await anchor.get_attribute("href") if anchor else None
        if not href:
            raise ItemUnresolved(page.url, f"{what} link not found")
        return urljoin(page.url, href)

    async def _lectures_from_listing(self, page: Page, url: str) -> list[str]:
        await self._goto(page, url)

        host = urlparse(url).hostname or ""
        if any(lms in host for lms in self.settings.LMS_HOSTS):
            listing_hosts = [h for h in self.settings.LISTING_HOSTS if h not in self.settings.LMS_HOSTS]
            selector = ", ".join(f'a[href*="{h}"]' for h in listing_hosts)
            await self._goto(page, await self._href(page, selector, "recordings listing"))

        show_all = await self._href(page, f'a[href*="{self.settings.LISTING_SHOW_ALL_PATTERN}"]', "show all recordings")
        await self._goto(page, show_all)

        hrefs = await page.eval_on_selector_all(RECORDING_ANCHORS, "els => els.map(e => e.href)")
        unique = list(dict.fromkeys(urljoin(page.url, h) for h in hrefs if h))
        logger.debug(f"{len(unique)} recording links in the listing table")

        cookie = await extract_listing_session_cookie(page, self.settings, page.url)
        headers = {"Cookie": cookie}
        lectures = []
        for href in unique:
            try:
                lectures.append(await get_redirect_url(self.http, href, headers))
            except ItemUnresolved as e:
                logger.warning(f"Skipping listing entry {href}: {e.reason}")
        return lectures
