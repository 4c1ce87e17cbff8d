import keyring
import pytest
from keyring.backends import fail

from poliwebex.credentials import ConfigStore, SecretStore, load_credentials

from .conftest import Prompts


class MemoryBackend:
    priority = 5

    def __init__(self, **saved):
        self.saved = {("PoliWebex", user): pw for user, pw in saved.items()}

    def get_password(self, service, username):
        return self.saved.get((service, username))

    def set_password(self, service, username, password):
        self.saved[(service, username)] = password


def test_config_update_merges_keys(tmp_path):
    store = ConfigStore(tmp_path / "config.json")
    store.save({"email": "a@mail.polimi.it", "SPID": False})

    store.update(cookie="ticket=x")

    assert store.load() == {"email": "a@mail.polimi.it", "SPID": False, "cookie": "ticket=x"}
    assert store.get("missing", "default") == "default"


def test_missing_config_file_is_empty(tmp_path):
    assert ConfigStore(tmp_path / "nope.json").load() == {}


def test_first_run_asks_everything_once(config):
    prompt = Prompts("", "10123456", "mario.rossi@mail.polimi.it")
    secret_prompt = Prompts("hunter2")
    backend = MemoryBackend()

    creds = load_credentials(config, SecretStore(backend), prompt, secret_prompt)

    assert creds.identity_username == "10123456"
    assert creds.person_code == "10123456"
    assert creds.email == "mario.rossi@mail.polimi.it"
    assert creds.password == "hunter2"
    assert not creds.uses_spid
    assert backend.saved == {("PoliWebex", "10123456"): "hunter2"}
    assert config.load() == {
        "SPID": False,
        "codicePersona": "10123456",
        "email": "mario.rossi@mail.polimi.it",
        "passwordSaved": True,
    }

    again = load_credentials(config, SecretStore(backend), Prompts(), Prompts())
    assert again == creds


def test_spid_user_is_asked_for_spid_username(config):
    config.save({"cookie": "ticket=old"})
    prompt = Prompts("PosteID", "mario.rossi", "mario.rossi@mail.polimi.it")

    creds = load_credentials(config, SecretStore(MemoryBackend(**{"mario.rossi": "pw"})), prompt, Prompts())

    assert creds.spid_provider == "posteid"
    assert creds.identity_username == "mario.rossi"
    assert creds.person_code is None
    assert creds.password == "pw"
    saved = config.load()
    assert saved["SPID"] == "posteid"
    assert saved["SPIDusername"] == "mario.rossi"
    assert saved["cookie"] == "ticket=old"


def test_explicit_password_is_stored(config):
    config.save({"SPID": False, "codicePersona": "10123456", "email": "m@mail.polimi.it"})
    backend = MemoryBackend(**{"10123456": "old"})

    creds = load_credentials(config, SecretStore(backend), Prompts(), Prompts(), password="new")

    assert creds.password == "new"
    assert backend.saved[("PoliWebex", "10123456")] == "new"
    assert config.get("passwordSaved") is True


def test_without_keyring_password_is_always_asked(config):
    config.save({"SPID": False, "codicePersona": "10123456", "email": "m@mail.polimi.it"})
    secret_prompt = Prompts("typed")

    creds = load_credentials(config, None, Prompts(), secret_prompt)

    assert creds.password == "typed"
    assert len(secret_prompt.questions) == 1
    assert "passwordSaved" not in config.load()


def test_detect_ignores_fail_backend(monkeypatch):
    monkeypatch.setattr(keyring, "get_keyring", lambda: fail.Keyring())

    assert SecretStore.detect() is None


def test_detect_uses_real_backend(monkeypatch):
    backend = MemoryBackend()
    monkeypatch.setattr(keyring, "get_keyring", lambda: backend)

    store = SecretStore.detect()

    assert store is not None
    store.set("10123456", "pw")
    assert store.get("10123456") == "pw"


@pytest.mark.parametrize("answer, expected", [("", None), ("  Aruba ", "aruba")])
def test_spid_answer_normalised(config, answer, expected):
    config.save({"email": "m@mail.polimi.it", "codicePersona": "1", "SPIDusername": "u"})

    creds = load_credentials(config, None, Prompts(answer), Prompts("pw"))

    assert creds.spid_provider == expected
