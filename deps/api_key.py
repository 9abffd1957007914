# deps/api_key.py
import hmac

from fastapi import Header, HTTPException, status

from settings import settings


def require_api_key(x_api_key: str | None = Header(default=None, alias="x-api-key")) -> None:
    """
    Guards the cron trigger and operator routes with CRON_API_KEY.
    """
    expected = (settings.CRON_API_KEY or "").strip()
    provided = (x_api_key or "").strip()
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="UNAUTHORIZED",
        )
