"""
core/events.py：结构化事件日志

格式：event=xxx | key=val | key=val

用法：
    from core.log import get_logger
    from core.events import log_event, E

    logger = get_logger(__name__)
    log_event(logger, E.ORDER_CREATE, order_id="ORD1700000000000ABC123", type="monthly")
    # 输出：event=order.create | order_id=ORD1700000000000ABC123 | type=monthly
"""

import logging
from typing import Any


class E:
    """事件类型常量，按功能模块分组。"""

    # ── 订单 Order ─────────────────────────────────────────────────────────────
    ORDER_CREATE = "order.create"
    ORDER_REJECT = "order.reject"
    ORDER_COMPLETE = "order.complete"

    # ── 支付 Payment ───────────────────────────────────────────────────────────
    PAYMENT_QRCODE = "payment.qrcode"
    PAYMENT_QUERY = "payment.query"
    PAYMENT_GATEWAY_FAIL = "payment.gateway.fail"
    PAYMENT_CALLBACK_RECEIVE = "payment.callback.receive"
    PAYMENT_CALLBACK_SIGN_FAIL = "payment.callback.sign_fail"
    PAYMENT_CALLBACK_REPLAY = "payment.callback.replay"
    PAYMENT_CALLBACK_IGNORE = "payment.callback.ignore"
    PAYMENT_CALLBACK_FAIL = "payment.callback.fail"
    PAYMENT_REFUND = "payment.refund"
    PAYMENT_CONFIG_UPDATE = "payment.config.update"

    # ── 邀请码 InviteCode ──────────────────────────────────────────────────────
    INVITE_CODE_CREATE = "invite_code.create"
    INVITE_CODE_MINT = "invite_code.mint"
    INVITE_CODE_DELETE = "invite_code.delete"
    INVITE_CODE_REDEEM = "invite_code.redeem"
    INVITE_CODE_STOCK_EMPTY = "invite_code.stock_empty"

    # ── 会员 Membership ────────────────────────────────────────────────────────
    MEMBERSHIP_ACTIVATE = "membership.activate"
    MEMBERSHIP_CONFIG_UPDATE = "membership.config.update"

    # ── 邮件 Email ─────────────────────────────────────────────────────────────
    EMAIL_SEND_COMPLETE = "email.send.complete"
    EMAIL_SEND_FAIL = "email.send.fail"
    EMAIL_SEND_SKIP = "email.send.skip"
    EMAIL_CONFIG_UPDATE = "email.config.update"

    # ── 订阅 Subscription ──────────────────────────────────────────────────────
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_UPDATE = "subscription.update"
    SUBSCRIPTION_DELETE = "subscription.delete"

    # ── 系统 System ────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"
    SYSTEM_MUTEX_BUSY = "system.mutex.busy"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    记录结构化事件日志。

        log_event(logger, E.PAYMENT_CALLBACK_SIGN_FAIL, level="warning",
                  order_id="ORD...", appid="201906...")
        # → event=payment.callback.sign_fail | order_id=ORD... | appid=201906...
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = v if isinstance(v, str) else str(v)
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    getattr(logger, level)(" | ".join(parts), stacklevel=2)
