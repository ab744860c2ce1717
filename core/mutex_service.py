"""
按 key 的短时互斥令牌

库存、体验会员限购这类“先数再写”的检查放在同一个 key 的令牌内执行，
令牌是 mutex_tokens 表中的一行（主键唯一），过期后可被他人抢占，
进程崩溃不会造成永久占用。令牌使用独立 session，不影响调用方事务。
"""

import time
import uuid
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError

from core.config import cfg
from core.db import DB
from core.events import E, log_event
from core.log import get_logger
from core.models.mutex_token import MutexToken
from core.setting_service import now_ms

logger = get_logger(__name__)


class MutexBusyError(RuntimeError):
    pass


def _try_acquire(key: str, owner: str, ttl_seconds: float) -> bool:
    session = DB.get_session()
    try:
        now = now_ms()
        session.query(MutexToken).filter(MutexToken.key == key, MutexToken.expires_at < now).delete(
            synchronize_session=False
        )
        session.add(MutexToken(key=key, owner=owner, expires_at=now + int(ttl_seconds * 1000)))
        session.commit()
        return True
    except IntegrityError:
        session.rollback()
        return False
    finally:
        session.close()


def _release(key: str, owner: str):
    session = DB.get_session()
    try:
        session.query(MutexToken).filter(MutexToken.key == key, MutexToken.owner == owner).delete(
            synchronize_session=False
        )
        session.commit()
    finally:
        session.close()


@contextmanager
def hold_mutex(key: str, ttl_seconds: float = 15, wait_seconds: float = None):
    wait = float(wait_seconds if wait_seconds is not None else cfg.get("orders.mutex_wait_seconds", 5))
    owner = uuid.uuid4().hex
    deadline = time.monotonic() + max(0.0, wait)
    while not _try_acquire(key, owner, ttl_seconds):
        if time.monotonic() >= deadline:
            log_event(logger, E.SYSTEM_MUTEX_BUSY, level="warning", key=key)
            raise MutexBusyError("系统繁忙，请稍后重试")
        time.sleep(0.05)
    try:
        yield owner
    finally:
        _release(key, owner)
