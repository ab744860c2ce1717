from typing import Dict

from core.events import E, log_event
from core.invite_code_service import CODE_STATUS_DISABLED, get_invite_code, update_invite_code
from core.log import get_logger
from core.models.order import Order
from core.order_service import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_REFUNDED,
    OrderNotFound,
    default_notify_url,
    get_order,
    order_title,
    return_url_for,
    update_order,
)
from core.payment_config_service import PaymentConfigNotReady, get_payment_config, resolve_xorpay_credentials
from core.setting_service import now_ms
from core.xorpay_client import GatewayError, XorpayClient

logger = get_logger(__name__)

PAYMENT_TYPES = ("wechat", "alipay")

REFUND_STATUS_MAP = {
    "CD": "refunded",
    "RD": "refunding",
    "UD": "refund_failed",
}


def get_xorpay_client(session, payment_type: str = "") -> XorpayClient:
    app_id, app_secret = resolve_xorpay_credentials(get_payment_config(session), payment_type=payment_type)
    return XorpayClient(app_id, app_secret)


def _require_order(session, order_id: str) -> Order:
    order = get_order(session, order_id)
    if not order:
        raise OrderNotFound("订单不存在")
    return order


def request_qrcode(session, order_id: str, payment_type: str, client: XorpayClient = None) -> Dict:
    """向网关下单拿二维码，并记下订单实际使用的支付方式"""
    if not order_id:
        raise ValueError("订单ID不能为空")
    if payment_type not in PAYMENT_TYPES:
        raise ValueError("请选择支付方式（wechat 或 alipay）")
    order = _require_order(session, order_id)
    if order.status != ORDER_STATUS_PENDING:
        raise ValueError("订单状态不正确")

    config = get_payment_config(session)
    if not config or not config.enabled or not config.xorpay:
        raise PaymentConfigNotReady("支付功能未启用")
    client = client or get_xorpay_client(session, payment_type)

    result = client.create_payment(
        order_id=order.order_id,
        amount=order.amount,
        title=order_title(session, order),
        notify_url=config.xorpay.notify_url or default_notify_url(),
        return_url=return_url_for(order),
        payment_type=payment_type,
    )
    payment_method = "xorpay_wechat" if payment_type == "wechat" else "xorpay_alipay"
    order = update_order(session, order.order_id, payment_method=payment_method)
    log_event(logger, E.PAYMENT_QRCODE, order_id=order.order_id, type=payment_type, amount=order.amount)
    return {
        "qrcode": result.get("url_qrcode"),
        "url": result.get("url"),
        "order_id": order.order_id,
        "amount": float(order.amount or 0),
        "payment_type": payment_type,
    }


def query_payment(session, order_id: str, client: XorpayClient = None) -> Dict:
    """
    查询网关侧支付状态。本地已完成直接返回 OD；
    网关报错时按待支付（WP）返回，真正的状态以回调为准。
    """
    if not order_id:
        raise ValueError("订单ID不能为空")
    order = _require_order(session, order_id)
    if order.status == ORDER_STATUS_COMPLETED:
        return {"order_id": order.order_id, "status": "OD", "local_status": order.status}

    client = client or get_xorpay_client(session)
    try:
        result = client.query_order(order.order_id)
    except GatewayError as e:
        log_event(logger, E.PAYMENT_QUERY, level="warning", order_id=order.order_id, error=e)
        return {"order_id": order.order_id, "status": "WP", "local_status": order.status, "message": str(e)}

    data = result.get("data") or {}
    remote_status = data.get("status") or "WP"
    log_event(logger, E.PAYMENT_QUERY, order_id=order.order_id, status=remote_status, local=order.status)
    return {
        "order_id": order.order_id,
        "status": remote_status,
        "local_status": order.status,
        "open_order_id": data.get("open_order_id"),
    }


def refund_order(session, order_id: str, reason: str = "", client: XorpayClient = None) -> Dict:
    if not order_id:
        raise ValueError("订单ID不能为空")
    order = _require_order(session, order_id)
    if order.status == ORDER_STATUS_REFUNDED or order.refund_status == "refunded":
        raise ValueError("订单已退款")
    if order.status != ORDER_STATUS_COMPLETED:
        raise ValueError("只能退款已完成的订单")

    client = client or get_xorpay_client(session)
    result = client.refund(order.order_id, reason=reason)
    refund_status = result.get("refund_status")

    fields = {
        "refund_status": REFUND_STATUS_MAP.get(refund_status, "refunding"),
        "refund_at": now_ms(),
        "refund_reason": (reason or "")[:200],
        "refund_no": result.get("out_refund_no"),
        "refund_fee": None if result.get("refund_fee") is None else str(result.get("refund_fee")),
    }
    if refund_status == "CD":
        fields["status"] = ORDER_STATUS_REFUNDED
        item = get_invite_code(session, order.invite_code) if order.invite_code else None
        if item:
            update_invite_code(
                session, item.code, commit=False, status=CODE_STATUS_DISABLED, note=f"{item.note or ''} [订单退款已禁用]"
            )
    order = update_order(session, order.order_id, **fields)
    log_event(logger, E.PAYMENT_REFUND, order_id=order.order_id, refund_status=refund_status, refund_no=order.refund_no)
    return {
        "order_id": order.order_id,
        "refund_status": refund_status,
        "refund_no": result.get("out_refund_no"),
        "refund_fee": result.get("refund_fee"),
        "refund_time": result.get("refund_time"),
    }


def diagnose_gateway(session) -> Dict:
    """网关网络诊断，不需要配置完整的凭据"""
    try:
        client = get_xorpay_client(session)
    except PaymentConfigNotReady:
        client = XorpayClient("", "")
    return client.diagnose()
