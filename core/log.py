"""
core/log.py：日志初始化

• 根日志器只配置一次，各模块通过 get_logger(__name__) 继承
• 每条日志带 trace_id（ContextVar），一次请求/回调内的日志可串起来查
• 格式: 时间 [级别] [trace_id] 模块.函数:行号 - 消息

用法：
    from core.log import get_logger, trace_ctx
    logger = get_logger(__name__)

    with trace_ctx(order_id):
        logger.info("event=payment.callback.receive | order_id=%s", order_id)
"""

import logging
import logging.handlers
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import colorlog

from core.config import cfg

_trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


def _new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def set_trace_id(tid: Optional[str] = None) -> str:
    tid = str(tid or "").strip()[:24] or _new_trace_id()
    _trace_id_var.set(tid)
    return tid


@contextmanager
def trace_ctx(trace_id: Optional[str] = None) -> Generator[str, None, None]:
    """在 with 块内使用指定 trace_id，退出时恢复。"""
    token = _trace_id_var.set(str(trace_id or "").strip()[:24] or _new_trace_id())
    try:
        yield _trace_id_var.get()
    finally:
        _trace_id_var.reset(token)


_LEVEL = logging.getLevelName(str(cfg.get("log.level", "INFO")).upper())
if not isinstance(_LEVEL, int):
    _LEVEL = logging.INFO
_LOG_FILE = cfg.get("log.file", "")

_FMT = "%(asctime)s [%(levelname)-5s] [%(trace_id)s] %(name)s.%(funcName)s:%(lineno)d - %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()
        return True


_trace_filter = _TraceIdFilter()
_APP_HANDLER_MARKER = "_is_app_log_handler"


def _setup_app_logging() -> None:
    # uvicorn --reload 会重复导入，按标记去重
    root = logging.getLogger()
    if any(getattr(h, _APP_HANDLER_MARKER, False) for h in root.handlers):
        return

    root.setLevel(_LEVEL)

    ch = colorlog.StreamHandler(stream=sys.stdout)
    ch.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s" + _FMT,
            datefmt=_DATE_FMT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    ch.setLevel(_LEVEL)
    ch.addFilter(_trace_filter)
    setattr(ch, _APP_HANDLER_MARKER, True)
    root.addHandler(ch)

    if _LOG_FILE:
        fh = logging.handlers.RotatingFileHandler(
            f"{_LOG_FILE}.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=7,
            encoding="utf-8",
        )
        fh.setLevel(_LEVEL)
        fh.setFormatter(logging.Formatter(_FMT, datefmt=_DATE_FMT))
        fh.addFilter(_trace_filter)
        setattr(fh, _APP_HANDLER_MARKER, True)
        root.addHandler(fh)


_setup_app_logging()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
