"""OAuth credential lifecycle: storage, refresh and tenant discovery."""

from .models import Credential, Tenant, TokenContext, default_tenant
from .refresher import TokenRefresher
from .store import CredentialStore


__all__ = [
    "Credential",
    "Tenant",
    "TokenContext",
    "default_tenant",
    "TokenRefresher",
    "CredentialStore",
]
