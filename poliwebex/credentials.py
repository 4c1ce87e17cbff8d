"""Credentials and persisted configuration.

The config file is a flat JSON object. Known keys:

- ``codicePersona``: institutional person code (legacy login form)
- ``SPIDusername``: username on the SPID identity provider
- ``SPID``: SPID identity provider id (e.g. ``"posteid"``), ``false`` for the
  institutional form
- ``email``: institutional email, typed on the Webex login page
- ``cookie``: last captured session ticket
- ``passwordSaved``: whether the password lives in the system keyring
"""

import getpass
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import keyring
from keyring.backends import fail

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "PoliWebex"

Prompt = Callable[[str], str]


@dataclass(frozen=True)
class Credentials:
    identity_username: str
    email: str
    password: str
    person_code: Optional[str] = None
    spid_provider: Optional[str] = None

    @property
    def uses_spid(self) -> bool:
        return bool(self.spid_provider)


class ConfigStore:
    """Read-merge-write access to the JSON config file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, data: dict) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=4)

    def update(self, **values) -> dict:
        data = self.load()
        data.update(values)
        self.save(data)
        return data

    def get(self, key: str, default=None):
        return self.load().get(key, default)


class SecretStore:
    """Password storage in the OS keychain.

    Use :meth:`detect` to obtain one: it returns ``None`` when the running
    system offers no usable backend, and callers fall back to prompting.
    """

    def __init__(self, backend, service: str = KEYRING_SERVICE) -> None:
        self._backend = backend
        self.service = service

    @classmethod
    def detect(cls) -> Optional["SecretStore"]:
        backend = keyring.get_keyring()
        if isinstance(backend, fail.Keyring) or backend.priority < 1:
            logger.info("No system keyring available, the password will not be saved.")
            return None
        return cls(backend)

    def get(self, username: str) -> Optional[str]:
        return self._backend.get_password(self.service, username)

    def set(self, username: str, password: str) -> None:
        self._backend.set_password(self.service, username, password)


def _ask_spid_provider(prompt: Prompt):
    answer = prompt(
        "Do you log in with SPID? Enter your identity provider (e.g. posteid, aruba, infocert, sielte) "
        "or leave empty to use your person code: "
    ).strip().lower()
    return answer or False


def load_credentials(
    config: ConfigStore,
    secrets: Optional[SecretStore],
    prompt: Prompt = input,
    secret_prompt: Prompt = getpass.getpass,
    password: Optional[str] = None,
) -> Credentials:
    """Build :class:`Credentials` from the config file, the keyring and prompts.

    Missing config keys are asked once and written back, so the next run
    does not ask again.
    """
    info = config.load()
    changed = False

    if "SPID" not in info:
        info["SPID"] = _ask_spid_provider(prompt)
        changed = True
    spid_provider = info["SPID"] or None

    if spid_provider:
        if not info.get("SPIDusername"):
            info["SPIDusername"] = prompt("SPID username not saved. Please enter your SPID username: ").strip()
            changed = True
        username = info["SPIDusername"]
    else:
        if not info.get("codicePersona"):
            info["codicePersona"] = prompt(
                "Person code (codice persona) not saved. Please enter your person code, "
                "PoliWebex will not ask for it next time: "
            ).strip()
            changed = True
        username = info["codicePersona"]

    if not info.get("email"):
        info["email"] = prompt(
            'Email not saved. Please enter your PoliMi email, in format "name.surname@mail.polimi.it", '
            "PoliWebex will not ask for it next time: "
        ).strip()
        changed = True

    if password is not None:
        if secrets is not None:
            secrets.set(username, password)
            info["passwordSaved"] = True
            changed = True
            logger.info("Your password has been saved. Next time, you can avoid entering it!")
    elif secrets is not None:
        password = secrets.get(username)
        if password is None:
            password = secret_prompt("Password not saved. Please enter your password, PoliWebex will not ask for it next time: ")
            secrets.set(username, password)
            info["passwordSaved"] = True
            changed = True
        else:
            logger.info("Reusing password saved in system's keychain!")
    else:
        password = secret_prompt("Please enter your password: ")

    if changed:
        # Re-read so keys written meanwhile (e.g. cookie) are preserved
        merged = config.load()
        merged.update(info)
        config.save(merged)

    return Credentials(
        identity_username=username,
        email=info["email"],
        password=password,
        person_code=info.get("codicePersona"),
        spid_provider=spid_provider,
    )
