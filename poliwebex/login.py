"""Browser-driven login through the PoliMi identity federation.

The flow is a small state machine. Every state has one handler that waits
for its page milestone, acts on the page and returns the next state::

    NAVIGATE_LOGIN_ENTRY -> SUBMIT_EMAIL -> AWAIT_FEDERATION_REDIRECT
        -> DIRECT_CREDENTIALS_FORM
        -> SPID_PROVIDER_SELECT -> PROVIDER_LOGIN_FORM -> AWAIT_RETURN_TO_HOME_REALM
    -> PASSWORD_EXPIRY_CONFIRM -> ACCOUNT_SELECTION -> AWAIT_FINAL_DOMAIN -> DONE

A timeout on a mandatory milestone raises :class:`LoginTimeout`; on an
optional one the step is skipped.
"""

import enum
import logging
from typing import Awaitable, Mapping, Optional
from urllib.parse import urlparse

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from .context import RunContext
from .credentials import Credentials
from .errors import BadCredentials, LoginTimeout, UnsupportedProviderPage
from .providers import PROVIDERS, ProviderFields, lookup_provider

logger = logging.getLogger(__name__)

EMAIL_INPUT = 'input[type="email"]'
EMAIL_SUBMIT = 'button[name="btnOK"]'
PERSON_CODE_INPUT = 'input#login'
PASSWORD_INPUT = 'input#password'
CREDENTIALS_SUBMIT = 'button[name="evn_conferma"]'
CREDENTIALS_ERROR = 'div[class="Message ErrorMessage"]'
PASSWORD_EXPIRY_CONTINUE = 'button[name="evn_continua"]'
ACCOUNT_TABLE = '#dati_applicativi_autorizzazioniXSceltaMatricolaColl'
FIRST_ACCOUNT = f'{ACCOUNT_TABLE} > tbody > tr:nth-child(1) > td:nth-child(1) > a'
SPID_ENTRY = '.italia-it-button'
SPID_PROVIDER_ITEM = 'li[data-idp="{provider}"] a'


def on_host(url: str, host: str) -> bool:
    """True if ``url`` points at ``host`` (query strings do not count)."""
    return host in (urlparse(url).hostname or "")


def is_login_page(url: str) -> bool:
    return "/login" in urlparse(url).path.lower()


class LoginState(enum.Enum):
    NAVIGATE_LOGIN_ENTRY = "navigate login entry"
    SUBMIT_EMAIL = "submit email"
    AWAIT_FEDERATION_REDIRECT = "await federation redirect"
    DIRECT_CREDENTIALS_FORM = "direct credentials form"
    SPID_PROVIDER_SELECT = "SPID provider select"
    PROVIDER_LOGIN_FORM = "provider login form"
    AWAIT_RETURN_TO_HOME_REALM = "await return to home realm"
    PASSWORD_EXPIRY_CONFIRM = "password expiry confirm"
    ACCOUNT_SELECTION = "account selection"
    AWAIT_FINAL_DOMAIN = "await final domain"
    DONE = "done"


class LoginStateMachine:
    def __init__(
        self,
        ctx: RunContext,
        credentials: Credentials,
        providers: Optional[Mapping[str, ProviderFields]] = None,
    ) -> None:
        self.ctx = ctx
        self.settings = ctx.settings
        self.credentials = credentials
        self.providers = PROVIDERS if providers is None else providers
        self.final_host = self.settings.HOME_HOST
        self.trace: list[LoginState] = []
        self._handlers = {
            LoginState.NAVIGATE_LOGIN_ENTRY: self._navigate_login_entry,
            LoginState.SUBMIT_EMAIL: self._submit_email,
            LoginState.AWAIT_FEDERATION_REDIRECT: self._await_federation_redirect,
            LoginState.DIRECT_CREDENTIALS_FORM: self._direct_credentials_form,
            LoginState.SPID_PROVIDER_SELECT: self._spid_provider_select,
            LoginState.PROVIDER_LOGIN_FORM: self._provider_login_form,
            LoginState.AWAIT_RETURN_TO_HOME_REALM: self._await_return_to_home_realm,
            LoginState.PASSWORD_EXPIRY_CONFIRM: self._password_expiry_confirm,
            LoginState.ACCOUNT_SELECTION: self._account_selection,
            LoginState.AWAIT_FINAL_DOMAIN: self._await_final_domain,
        }

    async def run(
        self,
        page: Page,
        start: LoginState = LoginState.NAVIGATE_LOGIN_ENTRY,
        final_host: Optional[str] = None,
    ) -> Page:
        """Drive ``page`` until it lands on ``final_host`` (the Webex portal by default)."""
        self.final_host = final_host or self.settings.HOME_HOST
        state = start
        while state is not LoginState.DONE:
            self.trace.append(state)
            logger.debug(f"Login state: {state.value}")
            state = await self._handlers[state](page)
        logger.info("We are logged in.")
        return page

    async def _reached(self, milestone: str, waiting: Awaitable, mandatory: bool = True) -> bool:
        try:
            await waiting
        except PlaywrightTimeoutError:
            if mandatory:
                raise LoginTimeout(milestone)
            logger.debug(f"Optional milestone not reached: {milestone}")
            return False
        return True

    async def _navigate_login_entry(self, page: Page) -> LoginState:
        logger.info("Navigating to WebEx login page...")
        await self._reached(
            "login page",
            page.goto(self.settings.LOGIN_URL, wait_until="networkidle", timeout=self.ctx.scaled(60000)),
        )
        return LoginState.SUBMIT_EMAIL

    async def _submit_email(self, page: Page) -> LoginState:
        await self._reached("email field", page.wait_for_selector(EMAIL_INPUT, timeout=self.ctx.scaled(30000)))
        await page.fill(EMAIL_INPUT, self.credentials.email)
        await page.click(EMAIL_SUBMIT)
        return LoginState.AWAIT_FEDERATION_REDIRECT

    async def _await_federation_redirect(self, page: Page) -> LoginState:
        idp_host = self.settings.IDP_HOST
        final_host = self.final_host

        def redirected(url: str) -> bool:
            # Webex sends us straight back when the IdP session is still alive
            return on_host(url, idp_host) or (on_host(url, final_host) and not is_login_page(url))

        await self._reached(
            "identity provider redirect",
            page.wait_for_url(redirected, timeout=self.ctx.scaled(30000)),
        )
        if not on_host(page.url, idp_host):
            logger.info("Single sign-on session still active, no credentials needed.")
            return LoginState.AWAIT_FINAL_DOMAIN
        if self.credentials.uses_spid:
            return LoginState.SPID_PROVIDER_SELECT
        return LoginState.DIRECT_CREDENTIALS_FORM

    async def _direct_credentials_form(self, page: Page) -> LoginState:
        logger.info("Filling in Servizi Online login form...")
        await self._reached("login form", page.wait_for_selector(PERSON_CODE_INPUT, timeout=self.ctx.scaled(30000)))
        await page.fill(PERSON_CODE_INPUT, self.credentials.identity_username)
        await page.fill(PASSWORD_INPUT, self.credentials.password)
        await page.click(CREDENTIALS_SUBMIT)
        if await self._reached(
            "login error message",
            page.wait_for_selector(CREDENTIALS_ERROR, timeout=self.ctx.scaled(1000)),
            mandatory=False,
        ):
            raise BadCredentials()
        return LoginState.PASSWORD_EXPIRY_CONFIRM

    async def _spid_provider_select(self, page: Page) -> LoginState:
        provider = self.credentials.spid_provider
        logger.info(f"Logging in with SPID ({provider})...")
        await self._reached("SPID button", page.wait_for_selector(SPID_ENTRY, timeout=self.ctx.scaled(30000)))
        await page.click(SPID_ENTRY)
        item = SPID_PROVIDER_ITEM.format(provider=provider)
        if not await self._reached(
            "SPID provider entry",
            page.wait_for_selector(item, timeout=self.ctx.scaled(10000)),
            mandatory=False,
        ):
            raise UnsupportedProviderPage(provider)
        await page.click(item)
        idp_host = self.settings.IDP_HOST
        await self._reached(
            "SPID provider page",
            page.wait_for_url(lambda url: not on_host(url, idp_host), timeout=self.ctx.scaled(30000)),
        )
        return LoginState.PROVIDER_LOGIN_FORM

    async def _provider_login_form(self, page: Page) -> LoginState:
        host = urlparse(page.url).hostname or ""
        fields = lookup_provider(host, self.providers)
        logger.info(f"Filling in {host} login form...")
        scope = page.frame_locator(fields.iframe) if fields.iframe else page
        username = scope.locator(fields.username)
        if not await self._reached(
            "provider login form",
            username.wait_for(timeout=self.ctx.scaled(15000)),
            mandatory=False,
        ):
            raise UnsupportedProviderPage(host)
        await username.fill(self.credentials.identity_username)
        password = scope.locator(fields.password)
        await password.fill(self.credentials.password)
        await password.press("Enter")
        if await self._reached(
            "provider error message",
            scope.locator(fields.error).first.wait_for(timeout=self.ctx.scaled(2000)),
            mandatory=False,
        ):
            raise BadCredentials()
        return LoginState.AWAIT_RETURN_TO_HOME_REALM

    async def _await_return_to_home_realm(self, page: Page) -> LoginState:
        logger.info("Waiting for the identity provider to send us back (approve the login on your device if asked)...")
        idp_host = self.settings.IDP_HOST
        final_host = self.final_host
        await self._reached(
            "return from identity provider",
            page.wait_for_url(lambda url: on_host(url, idp_host) or on_host(url, final_host), timeout=self.ctx.scaled(120000)),
        )
        return LoginState.PASSWORD_EXPIRY_CONFIRM

    async def _password_expiry_confirm(self, page: Page) -> LoginState:
        if await self._reached(
            "password expiry notice",
            page.wait_for_selector(PASSWORD_EXPIRY_CONTINUE, timeout=self.ctx.scaled(1000)),
            mandatory=False,
        ):
            logger.warning("Your password is expiring, remember to change it.")
            await page.click(PASSWORD_EXPIRY_CONTINUE)
        return LoginState.ACCOUNT_SELECTION

    async def _account_selection(self, page: Page) -> LoginState:
        if await self._reached(
            "account chooser",
            page.wait_for_selector(ACCOUNT_TABLE, timeout=self.ctx.scaled(2000)),
            mandatory=False,
        ):
            logger.info("Multiple accounts found, choosing the first one.")
            await page.click(FIRST_ACCOUNT)
        return LoginState.AWAIT_FINAL_DOMAIN

    async def _await_final_domain(self, page: Page) -> LoginState:
        final_host = self.final_host
        await self._reached(
            f"landing on {final_host}",
            page.wait_for_url(lambda url: on_host(url, final_host), timeout=self.ctx.scaled(90000)),
        )
        return LoginState.DONE
