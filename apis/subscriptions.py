from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.subscription_service import (
    SubscriptionForbidden,
    SubscriptionNotFound,
    create_subscription,
    delete_subscription,
    list_subscriptions,
    subscription_to_dict,
    update_subscription,
)
from .base import success_response


router = APIRouter(prefix="/subscriptions", tags=["影视订阅"])


class CreateSubscriptionRequest(BaseModel):
    title: str = Field(default="", max_length=255)
    source_key: str = Field(default="", max_length=255)
    current_episodes: int = Field(default=0, ge=0)
    email: str = Field(default="", max_length=255)


class UpdateSubscriptionRequest(BaseModel):
    id: str = Field(default="", max_length=64)
    status: str = Field(default="", max_length=16)
    email: str = Field(default="", max_length=255)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, SubscriptionNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SubscriptionForbidden):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.get("", summary="我的订阅")
async def my_subscriptions(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    return success_response(list_subscriptions(session, current_user.get("username")))


@router.post("", summary="创建订阅")
async def subscribe(payload: CreateSubscriptionRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        item = create_subscription(
            session,
            username=current_user.get("username"),
            title=payload.title,
            source_key=payload.source_key,
            email=payload.email,
            current_episodes=payload.current_episodes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response(subscription_to_dict(item), message="订阅成功")


@router.patch("", summary="暂停/恢复订阅或修改通知邮箱")
async def patch_subscription(payload: UpdateSubscriptionRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        item = update_subscription(
            session,
            username=current_user.get("username"),
            subscription_id=payload.id,
            status=payload.status,
            email=payload.email,
        )
    except (SubscriptionNotFound, SubscriptionForbidden, ValueError) as e:
        raise _http_error(e)
    return success_response(subscription_to_dict(item), message="更新成功")


@router.delete("", summary="取消订阅")
async def unsubscribe(id: str = Query("", max_length=64), current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        delete_subscription(session, current_user.get("username"), id)
    except (SubscriptionNotFound, SubscriptionForbidden, ValueError) as e:
        raise _http_error(e)
    return success_response(message="取消订阅成功")
