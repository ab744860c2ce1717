import secrets
from typing import Dict, List, Optional

from sqlalchemy import or_

from core.events import E, log_event
from core.log import get_logger
from core.membership_service import DAY_MS, get_membership_config, is_valid_membership_type
from core.models.invite_code import InviteCode
from core.setting_service import now_ms

logger = get_logger(__name__)

# 去除 0/O、1/I/L 等易混淆字符
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 12

CODE_STATUS_UNUSED = "unused"
CODE_STATUS_USED = "used"
CODE_STATUS_EXPIRED = "expired"
CODE_STATUS_DISABLED = "disabled"

MAX_BATCH_SIZE = 100


class InviteCodeNotFound(LookupError):
    pass


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def get_invite_code(session, code: str) -> Optional[InviteCode]:
    text = str(code or "").strip().upper()
    if not text:
        return None
    return session.query(InviteCode).filter(InviteCode.code == text).first()


def generate_unique_code(session) -> str:
    code = generate_code()
    while get_invite_code(session, code) is not None:
        code = generate_code()
    return code


def code_to_dict(item: InviteCode) -> Dict:
    return {
        "code": item.code,
        "membership_type": item.membership_type,
        "status": item.status,
        "created_at": item.created_at,
        "expires_at": item.expires_at,
        "used_at": item.used_at,
        "used_by": item.used_by,
        "created_by": item.created_by,
        "note": item.note,
        "order_id": item.order_id,
    }


def create_invite_codes(
    session,
    membership_type: str,
    count: int = 1,
    expires_in_days: int = 0,
    note: str = "",
    created_by: str = "admin",
) -> List[InviteCode]:
    if not is_valid_membership_type(membership_type):
        raise ValueError("无效的会员类型")
    total = int(count or 0)
    if total < 1 or total > MAX_BATCH_SIZE:
        raise ValueError(f"数量必须在1-{MAX_BATCH_SIZE}之间")
    days = int(expires_in_days or 0)
    if days < 0:
        raise ValueError("有效期不能为负数")

    now = now_ms()
    created = []
    for _ in range(total):
        item = InviteCode(
            code=generate_unique_code(session),
            membership_type=membership_type,
            status=CODE_STATUS_UNUSED,
            created_at=now,
            expires_at=now + days * DAY_MS if days > 0 else 0,
            created_by=str(created_by or "admin")[:50],
            note=(note or "").strip()[:500] or None,
        )
        session.add(item)
        # 同批次内的新码也要参与查重
        session.flush()
        created.append(item)
    session.commit()
    log_event(logger, E.INVITE_CODE_CREATE, type=membership_type, count=total, by=created_by)
    return created


def list_invite_codes(session, membership_type: str = "", status: str = "") -> List[Dict]:
    query = session.query(InviteCode)
    if membership_type:
        query = query.filter(InviteCode.membership_type == membership_type)
    if status:
        query = query.filter(InviteCode.status == status)
    rows = query.order_by(InviteCode.created_at.desc()).all()
    return [code_to_dict(x) for x in rows]


def update_invite_code(session, code: str, commit: bool = True, **fields) -> InviteCode:
    item = get_invite_code(session, code)
    if not item:
        raise InviteCodeNotFound("邀请码不存在")
    for key, value in fields.items():
        setattr(item, key, value)
    if commit:
        session.commit()
    return item


def delete_invite_code(session, code: str) -> None:
    item = get_invite_code(session, code)
    if not item:
        raise InviteCodeNotFound("邀请码不存在")
    if item.status != CODE_STATUS_UNUSED:
        raise ValueError("只能删除未使用的邀请码")
    deleted = (
        session.query(InviteCode)
        .filter(InviteCode.code == item.code, InviteCode.status == CODE_STATUS_UNUSED)
        .delete()
    )
    if deleted != 1:
        session.rollback()
        raise ValueError("只能删除未使用的邀请码")
    session.commit()
    log_event(logger, E.INVITE_CODE_DELETE, code=item.code)


def verify_invite_code(session, code: str) -> Dict:
    """公开校验接口：返回 {valid, message, data}"""
    item = get_invite_code(session, code)
    if not item:
        return {"valid": False, "message": "邀请码不存在", "data": None}
    if item.status == CODE_STATUS_USED:
        return {"valid": False, "message": "邀请码已被使用", "data": None}
    if item.status == CODE_STATUS_EXPIRED:
        return {"valid": False, "message": "邀请码已过期", "data": None}
    if item.status == CODE_STATUS_DISABLED:
        return {"valid": False, "message": "邀请码已禁用", "data": None}
    if item.expires_at and item.expires_at < now_ms():
        return {"valid": False, "message": "邀请码已过期", "data": None}

    tier = get_membership_config(session)[item.membership_type]
    return {
        "valid": True,
        "message": "邀请码有效",
        "data": {
            "membership_type": item.membership_type,
            "membership_name": tier.get("name"),
            "duration": tier.get("duration"),
            "price": tier.get("price"),
            "description": tier.get("description"),
        },
    }


# ─── 库存 ─────────────────────────────────────────────────────────────────────


def _stock_query(session, membership_type: str, now: int):
    return session.query(InviteCode).filter(
        InviteCode.membership_type == membership_type,
        InviteCode.status == CODE_STATUS_UNUSED,
        or_(InviteCode.expires_at == 0, InviteCode.expires_at > now),
        or_(InviteCode.order_id.is_(None), InviteCode.order_id == ""),
    )


def count_stock(session, membership_type: str, now: int = None) -> int:
    """可售库存：未使用、未过期、未绑定订单的邀请码"""
    return _stock_query(session, membership_type, now if now is not None else now_ms()).count()


def consume_stock_unit(session, membership_type: str, order_id: str) -> Optional[str]:
    """成交后核销一个库存码（不提交，由调用方事务统一提交）"""
    now = now_ms()
    candidates = _stock_query(session, membership_type, now).order_by(InviteCode.created_at.asc()).limit(5).all()
    for item in candidates:
        updated = (
            session.query(InviteCode)
            .filter(InviteCode.code == item.code, InviteCode.status == CODE_STATUS_UNUSED)
            .update(
                {
                    "status": CODE_STATUS_USED,
                    "used_at": now,
                    "used_by": f"order:{order_id}",
                    "order_id": order_id,
                }
            )
        )
        if updated == 1:
            return item.code
    log_event(logger, E.INVITE_CODE_STOCK_EMPTY, level="warning", type=membership_type, order_id=order_id)
    return None

