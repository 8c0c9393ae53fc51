from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from utils.security import verify_token

from .schemas import APIKeySettings

_settings = APIKeySettings()
_api_key_header = APIKeyHeader(name=_settings.header_name, auto_error=False)


async def require_admin(
    request: Request,
    api_key: Optional[str] = Security(_api_key_header),
) -> str:
    key_hash = request.app.state.service.settings.api_key_hash
    if not key_hash:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API key not configured.",
        )
    if not api_key or not verify_token(api_key, key_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )
    return api_key


__all__ = ["require_admin"]
