from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.membership_service import (
    InviteCodeRedeemError,
    get_membership_config,
    get_user_membership,
    membership_to_dict,
    redeem_invite_code,
    save_membership_config,
)
from .base import success_response


router = APIRouter(prefix="/membership", tags=["会员"])


def _require_admin(current_user: dict):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")


class RedeemRequest(BaseModel):
    code: str = Field(default="", max_length=32)


@router.get("", summary="当前用户会员信息")
async def my_membership(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    membership = get_user_membership(session, current_user.get("username"))
    return success_response(membership_to_dict(membership))


@router.post("/redeem", summary="兑换邀请码")
async def redeem(payload: RedeemRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        membership = redeem_invite_code(session, current_user.get("username"), payload.code)
    except InviteCodeRedeemError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response(membership_to_dict(membership), message="兑换成功")


@router.get("/config", summary="会员档位配置")
async def membership_config():
    session = DB.get_session()
    return success_response(get_membership_config(session))


@router.post("/config", summary="保存会员档位配置")
async def update_membership_config(payload: Dict[str, Any], current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(save_membership_config(session, payload), message="保存成功")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
