# Core module exports
from .config import Settings, get_settings
from .security import (
    InsecureSecretError,
    verify_admin_key,
    key_attribution,
)
from .errors import (
    RegistryIndexError,
    DiscoveryError,
    RegistryFetchError,
    IndexingInProgressError,
    IndexingNotRunningError,
)

__all__ = [
    "Settings",
    "get_settings",
    "InsecureSecretError",
    "verify_admin_key",
    "key_attribution",
    "RegistryIndexError",
    "DiscoveryError",
    "RegistryFetchError",
    "IndexingInProgressError",
    "IndexingNotRunningError",
]
