import json
from typing import Any, Dict
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from core.auth import get_current_user
from core.db import DB
from core.events import E, log_event
from core.log import get_logger, trace_ctx
from core.order_service import OrderNotFound, get_purchase_limit_config, save_purchase_limit_config
from core.payment_callback_service import ACK_FAIL, handle_xorpay_callback
from core.payment_config_service import (
    PaymentConfig,
    PaymentConfigNotReady,
    get_payment_config,
    public_payment_status,
    save_payment_config,
)
from core.payment_service import diagnose_gateway, query_payment, refund_order, request_qrcode
from core.xorpay_client import GatewayApiError, GatewayError, GatewayUnreachableError
from .base import success_response


router = APIRouter(prefix="/payment", tags=["支付"])
logger = get_logger(__name__)


def _require_admin(current_user: dict):
    if current_user.get("role") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="需要管理员权限")


def _gateway_http_error(e: GatewayError) -> HTTPException:
    if isinstance(e, GatewayUnreachableError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


class QrcodeRequest(BaseModel):
    order_id: str = Field(default="", max_length=64)
    payment_type: str = Field(default="", max_length=16)


class QueryRequest(BaseModel):
    order_id: str = Field(default="", max_length=64)


class RefundRequest(BaseModel):
    order_id: str = Field(default="", max_length=64)
    reason: str = Field(default="", max_length=200)


class PurchaseLimitRequest(BaseModel):
    trial_max_per_email: int = Field(default=1, ge=1)
    trial_max_per_day: int = Field(default=100, ge=1)


@router.get("/status", summary="获取支付开关状态")
async def payment_status():
    session = DB.get_session()
    return success_response(public_payment_status(get_payment_config(session)))


@router.get("/config", summary="获取支付配置")
async def get_config(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    config = get_payment_config(session) or PaymentConfig()
    return success_response(config.model_dump())


@router.post("/config", summary="保存支付配置")
async def update_config(payload: Dict[str, Any], current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        config = save_payment_config(session, payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"配置格式错误: {e.errors()[0].get('msg')}")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return success_response(config.model_dump(), message="保存成功")


@router.get("/purchase-limit", summary="获取限购配置")
async def get_purchase_limit(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    return success_response(get_purchase_limit_config(session))


@router.post("/purchase-limit", summary="保存限购配置")
async def update_purchase_limit(payload: PurchaseLimitRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(save_purchase_limit_config(session, payload.model_dump()), message="保存成功")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/qrcode", summary="获取支付二维码")
def payment_qrcode(payload: QrcodeRequest):
    session = DB.get_session()
    try:
        return success_response(request_qrcode(session, payload.order_id, payload.payment_type))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise _gateway_http_error(e)
    except (ValueError, PaymentConfigNotReady) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/query", summary="查询订单支付状态")
def payment_query(payload: QueryRequest):
    session = DB.get_session()
    try:
        return success_response(query_payment(session, payload.order_id))
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ValueError, PaymentConfigNotReady) as e:
        raise HTTPException(status_code=400, detail=str(e))


def _json_field_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


async def _read_callback_payload(request: Request) -> Dict[str, str]:
    """虎皮椒默认以表单提交，也兼容 JSON"""
    body = await request.body()
    text = body.decode("utf-8", errors="replace")
    if "application/json" in request.headers.get("content-type", ""):
        # 数字保留原文，布尔值按 JSON 写法，与网关签名时的文本一致
        data = json.loads(text or "{}", parse_int=str, parse_float=str)
        if not isinstance(data, dict):
            raise ValueError("回调数据格式错误")
        return {str(k): _json_field_text(v) for k, v in data.items()}
    return dict(parse_qsl(text, keep_blank_values=True))


def _run_callback(data: Dict[str, str]) -> str:
    session = DB.get_session()
    try:
        with trace_ctx(data.get("trade_order_id")):
            return handle_xorpay_callback(session, data)
    finally:
        session.close()


@router.post("/callback/xorpay", summary="虎皮椒支付回调", response_class=PlainTextResponse)
async def xorpay_callback(request: Request):
    try:
        data = await _read_callback_payload(request)
        result = await run_in_threadpool(_run_callback, data)
    except Exception as e:
        log_event(logger, E.PAYMENT_CALLBACK_FAIL, level="error", error=e)
        result = ACK_FAIL
    return PlainTextResponse(result, status_code=200, media_type="text/plain")


@router.get("/callback/xorpay", summary="回调接口说明")
async def xorpay_callback_info():
    return success_response({"note": "请使用 POST 方法提交回调数据"}, message="虎皮椒支付回调接口")


@router.post("/refund", summary="订单退款")
def payment_refund(payload: RefundRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(refund_order(session, payload.order_id, reason=payload.reason), message="退款请求已提交")
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayApiError as e:
        raise HTTPException(status_code=400, detail=str(e) or "退款请求失败")
    except GatewayError as e:
        raise _gateway_http_error(e)
    except (ValueError, PaymentConfigNotReady) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/diagnose", summary="诊断支付网关连通性")
def payment_diagnose(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    return success_response(diagnose_gateway(session), message="诊断完成")
