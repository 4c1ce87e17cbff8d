"""Run-scoped state shared by every stage of a run."""

import getpass
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from .credentials import ConfigStore, Credentials, SecretStore, load_credentials
from .settings import Settings

logger = logging.getLogger(__name__)


class BrowserSession:
    """A single Chromium page, launched on first use and shared afterwards."""

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None

    @property
    def is_open(self) -> bool:
        return self._page is not None

    async def page(self) -> Page:
        if self._page is None:
            logger.info("Launching Chrome to perform the login dance...")
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--disable-dev-shm-usage", "--lang=it-IT"],
            )
            context = await self._browser.new_context()
            self._page = await context.new_page()
        return self._page

    async def close(self) -> None:
        if self._browser is not None:
            logger.info("At this point Chrome's job is done, shutting it down...")
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = None
        self._browser = None
        self._page = None


@dataclass
class RunContext:
    settings: Settings
    config: ConfigStore
    secrets: Optional[SecretStore] = None
    browser: BrowserSession = field(default_factory=BrowserSession)
    timeout_scale: float = 1.0
    output_dir: Path = Path("videos")
    video_password: str = ""
    password: Optional[str] = None
    prompt: Callable[[str], str] = input
    secret_prompt: Callable[[str], str] = getpass.getpass
    not_downloaded: list[str] = field(default_factory=list)
    _credentials: Optional[Credentials] = field(default=None, init=False, repr=False)

    def scaled(self, milliseconds: float) -> float:
        """Apply the user timeout multiplier to a Playwright timeout."""
        return milliseconds * self.timeout_scale

    def credentials(self) -> Credentials:
        if self._credentials is None:
            self._credentials = load_credentials(
                self.config,
                self.secrets,
                prompt=self.prompt,
                secret_prompt=self.secret_prompt,
                password=self.password,
            )
        return self._credentials

    def mark_unresolved(self, url: str) -> None:
        if url not in self.not_downloaded:
            self.not_downloaded.append(url)
