import json
from pathlib import Path

import httpx
import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from poliwebex.context import RunContext
from poliwebex.credentials import ConfigStore, Credentials
from poliwebex.http import HttpClient
from poliwebex.settings import Settings

HOME = "https://politecnicomilano.webex.com"
IDP = "https://aunicalogin.polimi.it/aunicalogin/aunicalogin.jsp"
VIDEO_ID = "8de59dbf0a0345c6b525ed45a2c50607"
PLAYBACK_URL = f"{HOME}/recordingservice/sites/politecnicomilano/recording/playback/{VIDEO_ID}"


class FakeElement:
    def __init__(self, href=None):
        self.href = href

    async def get_attribute(self, name):
        return self.href if name == "href" else None


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def wait_for(self, timeout=None):
        if self.selector not in self.page.present:
            raise PlaywrightTimeoutError(f"waiting for {self.selector}")

    async def fill(self, value):
        self.page.filled[self.selector] = value

    async def press(self, key):
        self.page.pressed.append((self.selector, key))


class FakeBrowserContext:
    def __init__(self, cookies_by_call):
        self.cookies_by_call = list(cookies_by_call)
        self.calls = 0

    async def cookies(self, urls=None):
        self.calls += 1
        if self.cookies_by_call:
            return self.cookies_by_call.pop(0)
        return []


class FakePage:
    """Stand-in for a Playwright page.

    ``present`` lists the selectors found on the page, ``navigations`` the
    URLs the browser goes through, in order, while we wait for one.
    """

    def __init__(self, present=(), navigations=(), hrefs=None, cookies=(), table_links=(), redirects=None):
        self.url = "about:blank"
        self.redirects = redirects or {}
        self.present = set(present)
        self.navigations = list(navigations)
        self.hrefs = hrefs or {}
        self.table_links = list(table_links)
        self.context = FakeBrowserContext(cookies)
        self.filled = {}
        self.clicked = []
        self.pressed = []
        self.visited = []
        self.frames = []

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        self.url = self.redirects.get(url, url)

    async def wait_for_selector(self, selector, timeout=None):
        if selector not in self.present:
            raise PlaywrightTimeoutError(f"waiting for {selector}")
        return FakeElement(self.hrefs.get(selector))

    async def fill(self, selector, value):
        self.filled[selector] = value

    async def click(self, selector):
        self.clicked.append(selector)

    async def wait_for_url(self, predicate, timeout=None):
        if predicate(self.url):
            return
        while self.navigations:
            self.url = self.navigations.pop(0)
            if predicate(self.url):
                return
        raise PlaywrightTimeoutError("waiting for url")

    async def eval_on_selector_all(self, selector, expression):
        return list(self.table_links)

    def locator(self, selector):
        return FakeLocator(self, selector)

    def frame_locator(self, selector):
        self.frames.append(selector)
        return self


class FakeBrowser:
    def __init__(self, page):
        self._page = page
        self.opened = 0
        self.closed = 0

    @property
    def is_open(self):
        return self.opened > self.closed

    async def page(self):
        self.opened += 1
        return self._page

    async def close(self):
        self.closed += 1


class Prompts:
    """Scripted answers for interactive prompts."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        return self.answers.pop(0)


def mock_http(handler) -> HttpClient:
    return HttpClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def json_response(status, payload):
    return httpx.Response(status, text=json.dumps(payload))


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def config(tmp_path: Path):
    return ConfigStore(tmp_path / "config.json")


@pytest.fixture
def ctx(settings, config, tmp_path):
    return RunContext(
        settings=settings,
        config=config,
        output_dir=tmp_path / "videos",
        prompt=Prompts(),
        secret_prompt=Prompts(),
    )


@pytest.fixture
def credentials():
    return Credentials(
        identity_username="10123456",
        email="mario.rossi@mail.polimi.it",
        password="hunter2",
        person_code="10123456",
    )
