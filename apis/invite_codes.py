from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.invite_code_service import (
    MAX_BATCH_SIZE,
    InviteCodeNotFound,
    code_to_dict,
    create_invite_codes,
    delete_invite_code,
    list_invite_codes,
    verify_invite_code,
)
from core.order_service import get_stock_summary
from .base import success_response


router = APIRouter(prefix="/invite-codes", tags=["邀请码"])


def _require_admin(current_user: dict):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")


class GenerateRequest(BaseModel):
    membership_type: str = Field(..., max_length=20)
    count: int = Field(default=1, ge=1, le=MAX_BATCH_SIZE)
    expires_in: int = Field(default=0, ge=0, description="有效期（天），0 表示永久")
    note: str = Field(default="", max_length=500)


class VerifyRequest(BaseModel):
    code: str = Field(default="", max_length=32)


@router.get("", summary="邀请码列表")
async def get_invite_codes(
    membership_type: str = Query("", max_length=20),
    status: str = Query("", max_length=20),
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    return success_response(list_invite_codes(session, membership_type=membership_type, status=status))


@router.post("", summary="批量生成邀请码")
async def generate_invite_codes(payload: GenerateRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        codes = create_invite_codes(
            session,
            membership_type=payload.membership_type,
            count=payload.count,
            expires_in_days=payload.expires_in,
            note=payload.note,
            created_by=current_user.get("username") or "admin",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response([code_to_dict(x) for x in codes], message=f"成功生成 {len(codes)} 个邀请码")


@router.delete("", summary="删除未使用的邀请码")
async def remove_invite_code(code: str = Query(..., max_length=32), current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        delete_invite_code(session, code)
    except InviteCodeNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response(message="删除成功")


@router.post("/verify", summary="校验邀请码")
async def verify_code(payload: VerifyRequest):
    if not payload.code.strip():
        raise HTTPException(status_code=400, detail="请输入邀请码")
    session = DB.get_session()
    result = verify_invite_code(session, payload.code)
    return success_response(result["data"] if result["valid"] else None, message=result["message"], code=0 if result["valid"] else 1)


@router.get("/stock", summary="各会员类型库存")
async def invite_code_stock():
    session = DB.get_session()
    return success_response(get_stock_summary(session))
