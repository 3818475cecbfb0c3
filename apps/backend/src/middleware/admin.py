from dataclasses import dataclass

from fastapi import Header, HTTPException, Request

from src.core.security import key_attribution, verify_admin_key


ADMIN_KEY_HEADER = "X-Admin-API-Key"


@dataclass
class AdminContext:
    """Caller identity for admin routes."""

    created_by: str  # Trailing characters of the presented key
    ip_address: str


def _client_ip(request: Request) -> str:
    # Get real IP (handle X-Forwarded-For behind proxy)
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    ip_address = forwarded_for.split(",")[0].strip() if forwarded_for else None
    if not ip_address:
        ip_address = request.client.host if request.client else "0.0.0.0"
    return ip_address


async def require_admin_key(
    request: Request,
    x_admin_api_key: str | None = Header(default=None, alias=ADMIN_KEY_HEADER),
) -> AdminContext:
    """
    Dependency for admin routes. Raises 401 for a missing or unknown key.

    Usage:
        @router.post("/indexing/trigger")
        async def trigger(admin: AdminContext = Depends(require_admin_key)):
            ...
    """
    if not x_admin_api_key:
        raise HTTPException(status_code=401, detail="Missing admin API key")

    if not verify_admin_key(x_admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin API key")

    return AdminContext(
        created_by=key_attribution(x_admin_api_key),
        ip_address=_client_ip(request),
    )
