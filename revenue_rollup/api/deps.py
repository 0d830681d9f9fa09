import secrets

from fastapi import Header, HTTPException

from revenue_rollup.core.config import settings


def require_admin(x_admin_key: str = Header(..., alias="X-Admin-Key")) -> None:
    """Admin routes accept the shared admin key; user auth lives in the main API."""
    if not secrets.compare_digest(x_admin_key, settings.ADMIN_SECRET_KEY):
        raise HTTPException(status_code=403, detail="Admin privileges required")
