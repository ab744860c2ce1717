import uuid
from typing import Dict, List, Optional

from core.events import E, log_event
from core.log import get_logger
from core.models.user_subscription import UserSubscription
from core.order_service import validate_email
from core.setting_service import now_ms

logger = get_logger(__name__)

SUBSCRIPTION_STATUSES = ("active", "paused")


class SubscriptionNotFound(LookupError):
    pass


class SubscriptionForbidden(PermissionError):
    pass


def subscription_to_dict(item: UserSubscription) -> Dict:
    return {
        "id": item.id,
        "username": item.username,
        "email": item.email,
        "title": item.title,
        "source_key": item.source_key,
        "current_episodes": item.current_episodes,
        "notified_episodes": item.notified_episodes,
        "last_checked": item.last_checked,
        "status": item.status,
        "created_at": item.created_at,
    }


def list_subscriptions(session, username: str) -> List[Dict]:
    rows = (
        session.query(UserSubscription)
        .filter(UserSubscription.username == username)
        .order_by(UserSubscription.created_at.desc())
        .all()
    )
    return [subscription_to_dict(x) for x in rows]


def get_subscription(session, subscription_id: str) -> Optional[UserSubscription]:
    if not subscription_id:
        return None
    return session.query(UserSubscription).filter(UserSubscription.id == subscription_id).first()


def create_subscription(
    session, username: str, title: str, source_key: str, email: str, current_episodes: int = 0
) -> UserSubscription:
    title = str(title or "").strip()
    source_key = str(source_key or "").strip()
    if not title or not source_key:
        raise ValueError("缺少必要参数")
    if not str(email or "").strip():
        raise ValueError("请填写接收通知的邮箱")
    email = validate_email(email)

    exists = (
        session.query(UserSubscription)
        .filter(UserSubscription.username == username, UserSubscription.source_key == source_key)
        .first()
    )
    if exists:
        raise ValueError("您已订阅此影视")

    now = now_ms()
    episodes = max(0, int(current_episodes or 0))
    item = UserSubscription(
        id=str(uuid.uuid4()),
        username=username,
        email=email,
        title=title[:255],
        source_key=source_key[:255],
        current_episodes=episodes,
        notified_episodes=episodes,
        last_checked=now,
        status="active",
        created_at=now,
    )
    session.add(item)
    session.commit()
    log_event(logger, E.SUBSCRIPTION_CREATE, id=item.id, username=username, source_key=source_key)
    return item


def _owned(session, username: str, subscription_id: str, action: str) -> UserSubscription:
    if not subscription_id:
        raise ValueError("缺少订阅ID")
    item = get_subscription(session, subscription_id)
    if not item:
        raise SubscriptionNotFound("订阅不存在")
    if item.username != username:
        raise SubscriptionForbidden(f"无权限{action}此订阅")
    return item


def update_subscription(session, username: str, subscription_id: str, status: str = "", email: str = "") -> UserSubscription:
    item = _owned(session, username, subscription_id, "修改")
    if status in SUBSCRIPTION_STATUSES:
        item.status = status
    if email:
        item.email = validate_email(email)
    session.commit()
    log_event(logger, E.SUBSCRIPTION_UPDATE, id=item.id, status=item.status)
    return item


def delete_subscription(session, username: str, subscription_id: str) -> None:
    item = _owned(session, username, subscription_id, "删除")
    session.delete(item)
    session.commit()
    log_event(logger, E.SUBSCRIPTION_DELETE, id=subscription_id, username=username)
