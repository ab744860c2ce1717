"""
敏感配置脱敏

配置模型里的密钥字段统一声明为 MaskedSecret：
- 默认序列化（返回给管理后台）只输出占位符 ******，未设置时输出空串
- 落库时用 model_dump(context=REVEAL) 输出真实值
- 后台回传占位符时用 keep_secret() 保留已存储的值
"""

from typing import Annotated

from pydantic import PlainSerializer, SecretStr, SerializationInfo

SECRET_PLACEHOLDER = "******"
REVEAL = {"reveal_secrets": True}


def _serialize_secret(value: SecretStr, info: SerializationInfo) -> str:
    raw = value.get_secret_value() if isinstance(value, SecretStr) else str(value or "")
    context = info.context or {}
    if context.get("reveal_secrets"):
        return raw
    return SECRET_PLACEHOLDER if raw else ""


MaskedSecret = Annotated[SecretStr, PlainSerializer(_serialize_secret, return_type=str)]


def reveal(value) -> str:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return str(value or "")


def is_placeholder(value) -> bool:
    return reveal(value) == SECRET_PLACEHOLDER


def keep_secret(incoming, stored) -> SecretStr:
    """incoming 为占位符时沿用 stored，否则采用 incoming。"""
    if is_placeholder(incoming):
        return SecretStr(reveal(stored))
    return SecretStr(reveal(incoming))
