"""
Global settings API routes.
"""
from typing import Optional
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from rainarr.services.settings_service import ALLOWED_KEYS
from rainarr.utils.errors import log_and_raise_500

router = APIRouter(prefix="/api/global-settings", tags=["global-settings"])


class SettingUpdateRequest(BaseModel):
    """Values are stored as text; numbers and booleans are parsed on read."""
    value: Optional[str] = None


def _check_key(key: str):
    if key not in ALLOWED_KEYS:
        raise HTTPException(status_code=400, detail=f"Invalid key: {key}")


@router.get("")
async def list_settings(request: Request):
    """All settings that have a value, plus the list of accepted keys."""
    return {
        "settings": request.app.state.settings_service.get_all(),
        "keys": list(ALLOWED_KEYS),
    }


@router.get("/{key}")
async def get_setting(key: str, request: Request):
    _check_key(key)
    value = request.app.state.settings_service.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"Setting {key} is not set")
    return {"key": key, "value": value}


@router.put("/{key}")
async def set_setting(key: str, body: SettingUpdateRequest, request: Request):
    _check_key(key)
    try:
        await request.app.state.settings_service.set(key, body.value)
        return {"key": key, "value": body.value}
    except Exception as e:
        log_and_raise_500(e, "update setting")
