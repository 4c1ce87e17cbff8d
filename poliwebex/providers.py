"""Login form layouts of the SPID identity providers.

Each entry maps a hostname substring to the selectors of the provider's
login form. Providers rendering the form inside an iframe also name the
iframe. Hosts missing from the table get :data:`DEFAULT_PROVIDER`.
"""

from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class ProviderFields:
    username: str
    password: str
    iframe: Optional[str] = None
    error: str = '.alert-danger, .error, [role="alert"]'


DEFAULT_PROVIDER = ProviderFields(
    username='input[name="username"]',
    password='input[name="password"]',
)

PROVIDERS: dict[str, ProviderFields] = {
    "posteid.poste.it": ProviderFields('#username', '#password', error='.alert-danger, #message'),
    "loginspid.aruba.it": ProviderFields('#loginform\\:username', '#loginform\\:password', error='.ui-messages-error'),
    "identity.infocert.it": ProviderFields('input[name="username"]', 'input[name="password"]', error='.alert-danger'),
    "identity.sieltecloud.it": ProviderFields('#username', '#password', error='.alert-danger'),
    "spid.register.it": ProviderFields('#username', '#password', error='.error'),
    "id.lepida.it": ProviderFields('#username', '#password', error='.alert-danger'),
    "login.id.tim.it": ProviderFields('#username', '#password', error='.error-message'),
    "spid.intesa.it": ProviderFields('#username', '#password', iframe='iframe#spid-login', error='.alert-danger'),
    "idp.namirialtsp.com": ProviderFields('#username', '#password', error='.alert-danger'),
}


def lookup_provider(hostname: str, table: Optional[Mapping[str, ProviderFields]] = None) -> ProviderFields:
    """Return the fields of the first table entry contained in ``hostname``."""
    table = PROVIDERS if table is None else table
    for host_fragment, fields in table.items():
        if host_fragment in hostname:
            return fields
    return DEFAULT_PROVIDER
