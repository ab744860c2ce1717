from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from core.auth import get_optional_user, is_admin
from core.db import DB
from core.mutex_service import MutexBusyError
from core.order_service import (
    build_checkout_payload,
    create_order,
    get_order,
    list_orders,
    order_to_dict,
)
from core.payment_config_service import PaymentConfigNotReady
from .base import success_response


router = APIRouter(prefix="/orders", tags=["订单"])


class CreateOrderRequest(BaseModel):
    membership_type: str = Field(..., max_length=20)
    email: str = Field(..., max_length=255)


@router.post("", summary="创建会员订单")
def create_membership_order(payload: CreateOrderRequest, current_user: Optional[dict] = Depends(get_optional_user)):
    session = DB.get_session()
    try:
        order = create_order(
            session,
            membership_type=payload.membership_type,
            email=payload.email,
            user_id=(current_user or {}).get("username", ""),
        )
    except MutexBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        payment = build_checkout_payload(session, order)
    except PaymentConfigNotReady as e:
        raise HTTPException(status_code=400, detail=f"支付配置不完整: {e}")
    return success_response({"order": order_to_dict(order), "payment": payment}, message="订单创建成功")


@router.get("", summary="查询订单")
async def get_orders(
    order_id: str = Query("", max_length=64),
    limit: int = Query(200, ge=1, le=500),
    current_user: Optional[dict] = Depends(get_optional_user),
):
    session = DB.get_session()
    if order_id:
        order = get_order(session, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="订单不存在")
        # 匿名下单可凭订单号查询；登录用户只能查看自己的订单
        if current_user and not is_admin(current_user) and order.user_id and order.user_id != current_user.get("username"):
            raise HTTPException(status_code=403, detail="无权限查看该订单")
        return success_response(order_to_dict(order))

    if not current_user:
        raise HTTPException(status_code=401, detail="未登录或登录已过期")
    owner = "" if is_admin(current_user) else current_user.get("username")
    return success_response(list_orders(session, user_id=owner, limit=limit))

