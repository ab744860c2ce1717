"""
虎皮椒签名

1. 去掉值为空的参数和 hash 本身
2. 按参数名 ASCII 升序排列，拼成 key=value&key=value
3. 末尾直接拼接 AppSecret（无分隔符）
4. 对 UTF-8 字节做 MD5，取小写十六进制

下单、查询、退款请求和异步回调验签都用同一套规则，必须与网关逐字节一致。
"""

import hashlib
import hmac
from typing import Dict, Mapping

HASH_KEY = "hash"


def _clean_params(params: Mapping) -> Dict[str, str]:
    cleaned = {}
    for key, value in (params or {}).items():
        if key == HASH_KEY or value is None:
            continue
        text = value if isinstance(value, str) else str(value)
        if text == "":
            continue
        cleaned[str(key)] = text
    return cleaned


def build_sign_string(params: Mapping, secret: str) -> str:
    cleaned = _clean_params(params)
    joined = "&".join(f"{key}={cleaned[key]}" for key in sorted(cleaned))
    return joined + str(secret or "")


def sign(params: Mapping, secret: str) -> str:
    return hashlib.md5(build_sign_string(params, secret).encode("utf-8")).hexdigest()


def verify(params: Mapping, secret: str) -> bool:
    received = str((params or {}).get(HASH_KEY) or "").strip().lower()
    if not received or not secret:
        return False
    return hmac.compare_digest(received, sign(params, secret))


def signed_params(params: Mapping, secret: str) -> Dict[str, str]:
    """返回带 hash 的请求参数（空值参数原样丢弃，与签名保持一致）"""
    data = _clean_params(params)
    data[HASH_KEY] = sign(data, secret)
    return data
