from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, ValidationError

from core.auth import get_current_user
from core.db import DB
from core.email_service import (
    default_email_settings,
    get_email_settings,
    merge_email_settings,
    resolve_email_settings,
    save_email_settings,
    send_test_email,
)
from core.order_service import validate_email
from .base import success_response


router = APIRouter(prefix="/admin/email", tags=["邮件配置"])


def _require_admin(current_user: dict):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")


class TestEmailRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)
    test_email: str = Field(default="", max_length=255)


@router.get("", summary="获取邮件配置")
async def get_config(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    settings = get_email_settings(session) or resolve_email_settings(session) or default_email_settings()
    return success_response(settings.model_dump())


@router.post("", summary="保存邮件配置")
async def update_config(payload: Dict[str, Any], current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        settings = save_email_settings(session, payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"配置格式错误: {e.errors()[0].get('msg')}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response(settings.model_dump(), message="保存成功")


@router.post("/test", summary="发送测试邮件")
def send_config_test(payload: TestEmailRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    if not payload.test_email:
        raise HTTPException(status_code=400, detail="请填写测试邮箱")
    session = DB.get_session()
    try:
        to = validate_email(payload.test_email)
        settings = merge_email_settings(session, payload.config) if payload.config else resolve_email_settings(session)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"配置格式错误: {e.errors()[0].get('msg')}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not settings:
        raise HTTPException(status_code=400, detail="邮件服务未配置")
    ok, message = send_test_email(settings, to)
    if not ok:
        raise HTTPException(status_code=500, detail=message)
    return success_response(message=message)
