"""
虎皮椒异步回调

回调响应体只能是纯文本 success / fail：返回 fail 时网关会重试投递。
同一订单的重复回调或并发回调只会有一次成功履约：订单状态 pending/paid → completed
使用条件更新，与新邀请码写入、库存核销处于同一事务，输掉条件更新的一方整体回滚。
"""

import json
from typing import Callable, Dict, Optional

from core.email_service import send_invite_code_email
from core.events import E, log_event
from core.invite_code_service import CODE_STATUS_UNUSED, consume_stock_unit, generate_unique_code
from core.log import get_logger
from core.membership_service import get_tier_config
from core.models.invite_code import InviteCode
from core.models.order import Order
from core.order_service import ORDER_STATUS_COMPLETED, ORDER_STATUS_PAID, ORDER_STATUS_PENDING, get_order
from core.payment_config_service import PaymentConfigNotReady, get_payment_config, resolve_xorpay_credentials
from core.setting_service import now_ms
from core.signature import verify

logger = get_logger(__name__)

ACK_SUCCESS = "success"
ACK_FAIL = "fail"

PAID_STATUS = "OD"


def fulfill_order(session, order: Order, data: Dict) -> Optional[str]:
    """
    履约：生成邀请码、核销一个库存码、订单置为 completed。
    返回新邀请码；订单已被其他回调处理时返回 None（本事务已回滚）。
    """
    now = now_ms()
    code = generate_unique_code(session)
    updated = (
        session.query(Order)
        .filter(
            Order.order_id == order.order_id,
            Order.status.in_((ORDER_STATUS_PENDING, ORDER_STATUS_PAID)),
        )
        .update(
            {
                "status": ORDER_STATUS_COMPLETED,
                "paid_at": now,
                "completed_at": now,
                "invite_code": code,
                "transaction_id": data.get("transaction_id") or data.get("open_order_id") or None,
                "notify_data": json.dumps(data, ensure_ascii=False),
            }
        )
    )
    if updated != 1:
        session.rollback()
        return None

    session.add(
        InviteCode(
            code=code,
            membership_type=order.membership_type,
            status=CODE_STATUS_UNUSED,
            created_at=now,
            expires_at=0,
            created_by="system",
            note=f"订单 {order.order_id} 自动生成",
            order_id=order.order_id,
        )
    )
    consume_stock_unit(session, order.membership_type, order.order_id)
    session.commit()
    session.refresh(order)
    log_event(logger, E.INVITE_CODE_MINT, code=code, order_id=order.order_id, type=order.membership_type)
    return code


def _deliver_code(session, order: Order, code: str, send_email: Callable) -> bool:
    """邮件尽力而为，结果写回 email_sent"""
    if not order.email:
        return False
    name = get_tier_config(session, order.membership_type).get("name") or order.membership_type
    try:
        sent = bool(send_email(session, order.email, code, name))
    except Exception as e:
        log_event(logger, E.EMAIL_SEND_FAIL, level="error", order_id=order.order_id, error=e)
        sent = False
    session.query(Order).filter(Order.order_id == order.order_id).update({"email_sent": sent})
    session.commit()
    session.refresh(order)
    return sent


def handle_xorpay_callback(session, data: Dict, send_email: Callable = None) -> str:
    send_email = send_email or send_invite_code_email
    try:
        payload = {str(k): "" if v is None else str(v) for k, v in (data or {}).items()}
        order_id = payload.get("trade_order_id", "")
        status = payload.get("status", "")
        log_event(logger, E.PAYMENT_CALLBACK_RECEIVE, order_id=order_id, status=status, appid=payload.get("appid", ""))

        try:
            _, app_secret = resolve_xorpay_credentials(get_payment_config(session), appid=payload.get("appid", ""))
        except PaymentConfigNotReady as e:
            log_event(logger, E.PAYMENT_CALLBACK_FAIL, level="error", order_id=order_id, reason=e)
            return ACK_FAIL

        if not verify(payload, app_secret):
            log_event(logger, E.PAYMENT_CALLBACK_SIGN_FAIL, level="warning", order_id=order_id)
            return ACK_FAIL

        order = get_order(session, order_id)
        if not order:
            log_event(logger, E.PAYMENT_CALLBACK_FAIL, level="warning", order_id=order_id, reason="order_not_found")
            return ACK_FAIL

        if order.status == ORDER_STATUS_COMPLETED:
            log_event(logger, E.PAYMENT_CALLBACK_REPLAY, order_id=order_id)
            return ACK_SUCCESS

        # CD/RD/UD/WP 等状态只记录，不改订单
        if status != PAID_STATUS:
            log_event(logger, E.PAYMENT_CALLBACK_IGNORE, order_id=order_id, status=status)
            return ACK_SUCCESS

        code = fulfill_order(session, order, payload)
        if code is None:
            log_event(logger, E.PAYMENT_CALLBACK_REPLAY, order_id=order_id, reason="lost_conditional_update")
            return ACK_SUCCESS

        sent = _deliver_code(session, order, code, send_email)
        log_event(logger, E.ORDER_COMPLETE, order_id=order_id, code=code, email_sent=sent)
        return ACK_SUCCESS
    except Exception as e:
        session.rollback()
        log_event(logger, E.PAYMENT_CALLBACK_FAIL, level="error", order_id=(data or {}).get("trade_order_id", ""), error=e)
        return ACK_FAIL
