import random
import re
import secrets
import string
import time
from datetime import datetime
from typing import Dict, List, Optional

from core.config import cfg
from core.events import E, log_event
from core.invite_code_service import count_stock
from core.log import get_logger
from core.membership_service import (
    MEMBERSHIP_TYPES,
    get_membership_config,
    get_tier_config,
    is_valid_membership_type,
    resolve_price,
)
from core.models.order import Order
from core.mutex_service import hold_mutex
from core.payment_config_service import get_payment_config, resolve_xorpay_credentials
from core.setting_service import PURCHASE_LIMIT_CONFIG_KEY, get_setting, now_ms, set_setting
from core.signature import signed_params
from core.xorpay_client import API_VERSION, format_amount, gateway_hosts

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"

SOLD_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_PAID)

DEFAULT_PURCHASE_LIMIT_CONFIG = {
    "trial_max_per_email": 1,
    "trial_max_per_day": 100,
}


class OrderNotFound(LookupError):
    pass


class OrderRejected(ValueError):
    """下单被库存、限购或配置拦截"""


def generate_order_id() -> str:
    suffix = "".join(random.choice(string.digits + string.ascii_uppercase) for _ in range(6))
    return f"ORD{int(time.time() * 1000)}{suffix}"


def validate_email(email: str) -> str:
    text = str(email or "").strip().lower()
    if not text:
        raise ValueError("请填写邮箱")
    if not EMAIL_RE.match(text):
        raise ValueError("邮箱格式不正确")
    return text


def order_to_dict(order: Order) -> Dict:
    return {
        "order_id": order.order_id,
        "user_id": order.user_id,
        "email": order.email,
        "membership_type": order.membership_type,
        "amount": float(order.amount or 0),
        "payment_method": order.payment_method,
        "status": order.status,
        "created_at": order.created_at,
        "paid_at": order.paid_at,
        "completed_at": order.completed_at,
        "invite_code": order.invite_code,
        "transaction_id": order.transaction_id,
        "email_sent": order.email_sent,
        "refund_status": order.refund_status,
        "refund_at": order.refund_at,
        "refund_reason": order.refund_reason,
        "refund_no": order.refund_no,
        "refund_fee": order.refund_fee,
    }


def get_order(session, order_id: str) -> Optional[Order]:
    text = str(order_id or "").strip()
    if not text:
        return None
    return session.query(Order).filter(Order.order_id == text).first()


def list_orders(session, user_id: str = "", status: str = "", limit: int = 200) -> List[Dict]:
    query = session.query(Order)
    if user_id:
        query = query.filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)
    rows = query.order_by(Order.created_at.desc()).limit(max(1, int(limit))).all()
    return [order_to_dict(x) for x in rows]


def update_order(session, order_id: str, commit: bool = True, **fields) -> Order:
    order = get_order(session, order_id)
    if not order:
        raise OrderNotFound("订单不存在")
    for key, value in fields.items():
        setattr(order, key, value)
    if commit:
        session.commit()
    return order


# ─── 限购 ─────────────────────────────────────────────────────────────────────


def get_purchase_limit_config(session) -> Dict:
    merged = dict(DEFAULT_PURCHASE_LIMIT_CONFIG)
    stored = get_setting(session, PURCHASE_LIMIT_CONFIG_KEY) or {}
    for key in merged:
        if key in stored:
            merged[key] = stored[key]
    return merged


def save_purchase_limit_config(session, data: Dict) -> Dict:
    if not isinstance(data, dict):
        raise ValueError("无效的配置数据")
    config = get_purchase_limit_config(session)
    for key in DEFAULT_PURCHASE_LIMIT_CONFIG:
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValueError(f"{key} 必须为正整数")
        config[key] = value
    return set_setting(session, PURCHASE_LIMIT_CONFIG_KEY, config)


def _pending_hold_since(now: int) -> int:
    minutes = int(cfg.get("orders.pending_hold_minutes", 30))
    return now - minutes * 60 * 1000


def _count_orders(session, membership_type: str, statuses, since: int = None, email: str = "") -> int:
    query = session.query(Order).filter(Order.membership_type == membership_type, Order.status.in_(statuses))
    if since is not None:
        query = query.filter(Order.created_at >= since)
    if email:
        query = query.filter(Order.email == email)
    return query.count()


def count_live_pending(session, membership_type: str, now: int = None, email: str = "", since: int = None) -> int:
    """未过保留期的待支付订单，视为占用库存/名额"""
    now = now if now is not None else now_ms()
    hold_since = _pending_hold_since(now)
    if since is not None:
        hold_since = max(hold_since, since)
    return _count_orders(session, membership_type, (ORDER_STATUS_PENDING,), since=hold_since, email=email)


def _today_start_ms() -> int:
    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    return int(today.timestamp() * 1000)


def check_purchase_limit(session, membership_type: str, email: str) -> Optional[str]:
    """只限制体验会员；返回拒绝原因，None 表示放行"""
    if membership_type != "trial":
        return None
    config = get_purchase_limit_config(session)
    now = now_ms()

    max_per_email = int(config["trial_max_per_email"])
    sold_by_email = _count_orders(session, "trial", SOLD_STATUSES, email=email)
    if sold_by_email >= max_per_email:
        return f"每个邮箱最多只能购买 {max_per_email} 次体验会员"
    if sold_by_email + count_live_pending(session, "trial", now=now, email=email) >= max_per_email:
        return "您有待支付的体验会员订单，请先完成支付"

    today = _today_start_ms()
    sold_today = _count_orders(session, "trial", SOLD_STATUSES, since=today)
    if sold_today + count_live_pending(session, "trial", now=now, since=today) >= int(config["trial_max_per_day"]):
        return "体验会员今日已售罄，请明天再来"
    return None


def available_stock(session, membership_type: str, now: int = None) -> int:
    """可下单数量：库存码减去未过保留期的待支付订单，不小于 0"""
    now = now if now is not None else now_ms()
    return max(0, count_stock(session, membership_type, now) - count_live_pending(session, membership_type, now=now))


def get_stock_summary(session) -> List[Dict]:
    """公开库存：stock 与下单时的判断一致，code_count 为未绑定订单的库存码数"""
    config = get_membership_config(session)
    now = now_ms()
    rows = []
    for tier in MEMBERSHIP_TYPES:
        item = config[tier]
        stock = available_stock(session, tier, now=now)
        rows.append(
            {
                "type": tier,
                "name": item.get("name"),
                "price": item.get("price"),
                "discount_price": item.get("discount_price"),
                "duration": item.get("duration"),
                "description": item.get("description"),
                "enabled": item.get("enabled", True) is not False,
                "stock": stock,
                "code_count": count_stock(session, tier, now),
                "available": stock > 0,
            }
        )
    return rows


# ─── 下单 ─────────────────────────────────────────────────────────────────────


def _reject(membership_type: str, email: str, reason: str):
    log_event(logger, E.ORDER_REJECT, type=membership_type, email=email, reason=reason)
    raise OrderRejected(reason)


def create_order(session, membership_type: str, email: str, user_id: str = "") -> Order:
    if not is_valid_membership_type(membership_type):
        raise ValueError("无效的会员类型")
    email = validate_email(email)

    # 库存与限购的“先数再写”在同一档位令牌内完成
    with hold_mutex(f"order:create:{membership_type}"):
        if available_stock(session, membership_type) <= 0:
            _reject(membership_type, email, "该类型邀请码已售罄，请选择其他类型")
        reason = check_purchase_limit(session, membership_type, email)
        if reason:
            _reject(membership_type, email, reason)

        payment_config = get_payment_config(session)
        if not payment_config or not payment_config.enabled:
            _reject(membership_type, email, "支付功能未启用")
        tier = get_tier_config(session, membership_type)
        if tier.get("enabled") is False:
            _reject(membership_type, email, "该会员类型已下架")

        order = Order(
            order_id=generate_order_id(),
            user_id=str(user_id or "").strip() or None,
            email=email,
            membership_type=membership_type,
            amount=resolve_price(tier),
            payment_method=payment_config.method,
            status=ORDER_STATUS_PENDING,
            created_at=now_ms(),
        )
        session.add(order)
        session.commit()

    log_event(
        logger,
        E.ORDER_CREATE,
        order_id=order.order_id,
        type=membership_type,
        amount=order.amount,
        method=order.payment_method,
    )
    return order


def _site_url() -> str:
    return str(cfg.get("site.url") or "http://localhost:8001").rstrip("/")


def default_notify_url() -> str:
    return f"{_site_url()}/api/v1/payment/callback/xorpay"


def return_url_for(order: Order) -> str:
    return f"{_site_url()}/purchase?order_id={order.order_id}&status=success"


def order_title(session, order: Order) -> str:
    return f"{get_tier_config(session, order.membership_type).get('name') or '会员'}购买"


def build_checkout_payload(session, order: Order) -> Dict:
    """
    下单后返回给前端的支付参数。
    虎皮椒：签名好的表单参数（含 hash）与网关地址，appsecret 不会返回；
    官方通道暂未接入，只返回提示。
    """
    config = get_payment_config(session)
    method = order.payment_method or ""
    if not method.startswith("xorpay"):
        return {"type": method, "message": "官方支付通道暂未接入，请使用虎皮椒支付"}

    payment_type = "alipay" if method == "xorpay_alipay" else "wechat"
    app_id, app_secret = resolve_xorpay_credentials(config, payment_type=payment_type)
    params = {
        "version": API_VERSION,
        "appid": app_id,
        "trade_order_id": order.order_id,
        "total_fee": format_amount(order.amount),
        "title": order_title(session, order),
        "time": str(int(time.time())),
        "notify_url": (config.xorpay.notify_url if config and config.xorpay else "") or default_notify_url(),
        "return_url": return_url_for(order),
        "nonce_str": secrets.token_hex(16),
        "type": payment_type,
    }
    return {
        "type": "xorpay",
        "gateway_url": f"{gateway_hosts()[0]}/payment/do.html",
        "params": signed_params(params, app_secret),
    }
