import secrets

from .config import get_settings


class InsecureSecretError(Exception):
    pass


WEAK_ADMIN_KEYS = {
    "admin",
    "change-me",
    "development",
    "test-admin-key",
}

# Trailing characters of an admin key recorded as run attribution
ATTRIBUTION_SUFFIX_LENGTH = 4


def get_admin_keys() -> list[str]:
    """Configured keys; raises InsecureSecretError for weak keys in production."""
    settings = get_settings()
    keys = settings.admin_keys

    if settings.environment == "production":
        weak = [k for k in keys if k in WEAK_ADMIN_KEYS]
        if weak:
            raise InsecureSecretError(
                "Production environment detected with weak ADMIN_API_KEYS"
            )

    return keys


def verify_admin_key(provided: str | None) -> bool:
    """Constant-time comparison against every configured key."""
    if not provided:
        return False

    matched = False
    for key in get_admin_keys():
        if secrets.compare_digest(key.encode("utf-8"), provided.encode("utf-8")):
            matched = True
    return matched


def key_attribution(api_key: str) -> str:
    return api_key[-ATTRIBUTION_SUFFIX_LENGTH:]
