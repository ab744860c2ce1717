import copy
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple

from core.events import E, log_event
from core.log import get_logger
from core.models.invite_code import InviteCode
from core.models.user_membership import UserMembership
from core.setting_service import MEMBERSHIP_CONFIG_KEY, get_setting, now_ms, set_setting

logger = get_logger(__name__)

MEMBERSHIP_TYPES = ("trial", "monthly", "quarterly", "yearly", "lifetime")
DAY_MS = 24 * 60 * 60 * 1000

DEFAULT_MEMBERSHIP_CONFIG: Dict[str, Dict] = {
    "trial": {
        "type": "trial",
        "name": "体验会员",
        "duration": 1,
        "price": 0.1,
        "description": "1天体验会员权限",
    },
    "monthly": {
        "type": "monthly",
        "name": "月度会员",
        "duration": 30,
        "price": 25,
        "description": "1个月会员权限",
    },
    "quarterly": {
        "type": "quarterly",
        "name": "季度会员",
        "duration": 90,
        "price": 60,
        "description": "3个月会员权限",
    },
    "yearly": {
        "type": "yearly",
        "name": "年度会员",
        "duration": 365,
        "price": 199,
        "description": "12个月会员权限",
    },
    "lifetime": {
        "type": "lifetime",
        "name": "永久会员",
        "duration": 0,
        "price": 399,
        "description": "永久会员权限",
    },
}


class InviteCodeRedeemError(ValueError):
    pass


def is_valid_membership_type(membership_type: str) -> bool:
    return str(membership_type or "") in MEMBERSHIP_TYPES


def get_membership_config(session) -> Dict[str, Dict]:
    """默认配置与已保存配置按档位合并，保证五个档位都存在"""
    merged = copy.deepcopy(DEFAULT_MEMBERSHIP_CONFIG)
    stored = get_setting(session, MEMBERSHIP_CONFIG_KEY) or {}
    for tier, item in stored.items():
        if tier in merged and isinstance(item, dict):
            merged[tier].update(item)
            merged[tier]["type"] = tier
    return merged


def get_tier_config(session, membership_type: str) -> Dict:
    return get_membership_config(session)[membership_type]


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def save_membership_config(session, config: Dict) -> Dict:
    if not isinstance(config, dict):
        raise ValueError("无效的配置数据")
    cleaned = {}
    for tier in MEMBERSHIP_TYPES:
        item = config.get(tier)
        if not isinstance(item, dict):
            raise ValueError(f"缺少 {tier} 配置")
        if not _is_number(item.get("price")) or item["price"] < 0:
            raise ValueError(f"{tier} 价格必须为非负数")
        if not _is_number(item.get("duration")) or item["duration"] < 0:
            raise ValueError(f"{tier} 时长必须为非负数")
        discount_price = item.get("discount_price")
        if discount_price is not None and (not _is_number(discount_price) or discount_price < 0):
            raise ValueError(f"{tier} 折扣价必须为非负数")
        cleaned[tier] = {**item, "type": tier}
    set_setting(session, MEMBERSHIP_CONFIG_KEY, cleaned)
    log_event(logger, E.MEMBERSHIP_CONFIG_UPDATE, tiers=",".join(cleaned.keys()))
    return cleaned


def resolve_price(tier_config: Dict) -> Decimal:
    """有效折扣价（已设置、大于 0 且低于原价）优先，否则原价"""
    price = Decimal(str(tier_config.get("price") or 0))
    discount = tier_config.get("discount_price")
    if discount is not None and discount != "":
        discount_price = Decimal(str(discount))
        if Decimal("0") < discount_price < price:
            return discount_price
    return price


# ─── 用户会员 ─────────────────────────────────────────────────────────────────


def get_user_membership(session, username: str) -> Optional[UserMembership]:
    name = str(username or "").strip()
    if not name:
        return None
    return session.query(UserMembership).filter(UserMembership.username == name).first()


def is_membership_active(membership: Optional[UserMembership], now: int = None) -> bool:
    if not membership or not membership.is_active:
        return False
    if membership.expiry_date == 0:
        return True
    now = now if now is not None else now_ms()
    return bool(membership.expiry_date) and membership.expiry_date > now


def get_remaining_days(membership: Optional[UserMembership], now: int = None) -> int:
    """剩余天数，-1 表示永久"""
    if not membership or not membership.is_active:
        return 0
    if membership.expiry_date == 0:
        return -1
    if not membership.expiry_date:
        return 0
    now = now if now is not None else now_ms()
    remaining = membership.expiry_date - now
    if remaining <= 0:
        return 0
    return -(-remaining // DAY_MS)


def format_expiry(membership: Optional[UserMembership], now: int = None) -> str:
    if not membership or not membership.is_active:
        return "未激活"
    if membership.expiry_date == 0:
        return "永久有效"
    if not membership.expiry_date:
        return "未知"
    days = get_remaining_days(membership, now)
    if days <= 0:
        return "已过期"
    expiry = datetime.fromtimestamp(membership.expiry_date / 1000)
    return f"{expiry.strftime('%Y-%m-%d')} (剩余{days}天)"


def membership_to_dict(membership: Optional[UserMembership]) -> Optional[Dict]:
    if not membership:
        return None
    return {
        "username": membership.username,
        "membership_type": membership.membership_type,
        "start_date": membership.start_date,
        "expiry_date": membership.expiry_date,
        "is_active": bool(membership.is_active),
        "activated_by": membership.activated_by,
        "activated_at": membership.activated_at,
        "active_now": is_membership_active(membership),
        "remaining_days": get_remaining_days(membership),
        "expiry_text": format_expiry(membership),
    }


def _membership_window(current: Optional[UserMembership], duration_days: int, now: int) -> Tuple[int, int]:
    if duration_days <= 0:
        return now, 0
    start = now
    if is_membership_active(current, now):
        if current.expiry_date == 0:
            return current.start_date or now, 0
        start = current.expiry_date
    return start, start + int(duration_days) * DAY_MS


def redeem_invite_code(session, username: str, code: str) -> UserMembership:
    """兑换邀请码：邀请码 unused → used 使用条件更新，保证一码只兑换一次"""
    name = str(username or "").strip()
    code_text = str(code or "").strip().upper()
    if not name:
        raise InviteCodeRedeemError("用户名不能为空")
    if not code_text:
        raise InviteCodeRedeemError("请输入邀请码")

    item = session.query(InviteCode).filter(InviteCode.code == code_text).first()
    if not item:
        raise InviteCodeRedeemError("邀请码不存在")
    if item.status != "unused":
        raise InviteCodeRedeemError("邀请码已被使用" if item.status == "used" else "邀请码不可用")
    now = now_ms()
    if item.expires_at and item.expires_at < now:
        raise InviteCodeRedeemError("邀请码已过期")

    updated = (
        session.query(InviteCode)
        .filter(InviteCode.code == code_text, InviteCode.status == "unused")
        .update({"status": "used", "used_at": now, "used_by": name})
    )
    if updated != 1:
        session.rollback()
        raise InviteCodeRedeemError("邀请码已被使用")

    tier = get_tier_config(session, item.membership_type)
    membership = get_user_membership(session, name)
    start, expiry = _membership_window(membership, int(tier.get("duration") or 0), now)
    if not membership:
        membership = UserMembership(username=name)
        session.add(membership)
    membership.membership_type = item.membership_type
    membership.start_date = start
    membership.expiry_date = expiry
    membership.is_active = True
    membership.activated_by = code_text
    membership.activated_at = now
    session.commit()
    log_event(logger, E.INVITE_CODE_REDEEM, code=code_text, username=name, type=item.membership_type)
    log_event(logger, E.MEMBERSHIP_ACTIVATE, username=name, type=item.membership_type, expiry=expiry)
    return membership
