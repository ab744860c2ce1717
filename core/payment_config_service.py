from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, SecretStr, field_validator

from core.events import E, log_event
from core.log import get_logger
from core.secret import REVEAL, MaskedSecret, keep_secret, reveal
from core.setting_service import PAYMENT_CONFIG_KEY, get_setting, set_setting

logger = get_logger(__name__)

PAYMENT_METHODS = ("wechat_official", "alipay_official", "xorpay_wechat", "xorpay_alipay")
PAYMENT_CHANNELS = ("wechat", "alipay")


class PaymentConfigNotReady(RuntimeError):
    pass


class XorpayChannel(BaseModel):
    app_id: str = ""
    app_secret: MaskedSecret = SecretStr("")


class XorpayConfig(BaseModel):
    app_id: str = ""
    app_secret: MaskedSecret = SecretStr("")
    notify_url: str = ""
    # 微信/支付宝分别开通时，虎皮椒会给每个渠道独立的 appid
    channels: Dict[str, XorpayChannel] = Field(default_factory=dict)

    @field_validator("channels")
    @classmethod
    def _known_channels(cls, value: Dict[str, XorpayChannel]) -> Dict[str, XorpayChannel]:
        unknown = [x for x in value if x not in PAYMENT_CHANNELS]
        if unknown:
            raise ValueError(f"未知的支付渠道: {','.join(unknown)}")
        return value


class WechatOfficialConfig(BaseModel):
    app_id: str = ""
    mch_id: str = ""
    api_key: MaskedSecret = SecretStr("")
    notify_url: str = ""


class AlipayOfficialConfig(BaseModel):
    app_id: str = ""
    private_key: MaskedSecret = SecretStr("")
    public_key: str = ""
    notify_url: str = ""


class PaymentConfig(BaseModel):
    enabled: bool = False
    method: str = "xorpay_wechat"
    enabled_methods: List[str] = Field(default_factory=lambda: list(PAYMENT_CHANNELS))
    xorpay: Optional[XorpayConfig] = None
    wechat_official: Optional[WechatOfficialConfig] = None
    alipay_official: Optional[AlipayOfficialConfig] = None

    @field_validator("method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        if value not in PAYMENT_METHODS:
            raise ValueError("无效的支付方式")
        return value

    @field_validator("enabled_methods")
    @classmethod
    def _known_enabled_methods(cls, value: List[str]) -> List[str]:
        cleaned = []
        for item in value:
            if item not in PAYMENT_CHANNELS:
                raise ValueError(f"无效的支付渠道: {item}")
            if item not in cleaned:
                cleaned.append(item)
        return cleaned


def get_payment_config(session) -> Optional[PaymentConfig]:
    stored = get_setting(session, PAYMENT_CONFIG_KEY)
    if stored is None:
        return None
    return PaymentConfig.model_validate(stored)


def _merge_secrets(incoming: PaymentConfig, stored: Optional[PaymentConfig]):
    """后台回显的是占位符，保存时沿用库里的真实密钥"""
    if not stored:
        return
    pairs = (
        (incoming.xorpay, stored.xorpay, ("app_secret",)),
        (incoming.wechat_official, stored.wechat_official, ("api_key",)),
        (incoming.alipay_official, stored.alipay_official, ("private_key",)),
    )
    for new, old, fields in pairs:
        if new is None or old is None:
            continue
        for name in fields:
            setattr(new, name, keep_secret(getattr(new, name), getattr(old, name)))
    if incoming.xorpay and stored.xorpay:
        for channel, item in incoming.xorpay.channels.items():
            previous = stored.xorpay.channels.get(channel)
            if previous is not None:
                item.app_secret = keep_secret(item.app_secret, previous.app_secret)


def save_payment_config(session, data: Dict) -> PaymentConfig:
    if not isinstance(data, dict):
        raise ValueError("无效的配置数据")
    config = PaymentConfig.model_validate(data)
    _merge_secrets(config, get_payment_config(session))

    if config.enabled and config.method.startswith("xorpay"):
        if not config.xorpay or not config.xorpay.app_id or not reveal(config.xorpay.app_secret):
            raise ValueError("请填写完整的虎皮椒配置（appid 与 appsecret）")
    if config.enabled and config.method == "wechat_official" and not config.wechat_official:
        raise ValueError("请填写微信支付配置")
    if config.enabled and config.method == "alipay_official" and not config.alipay_official:
        raise ValueError("请填写支付宝配置")

    set_setting(session, PAYMENT_CONFIG_KEY, config.model_dump(context=REVEAL))
    log_event(logger, E.PAYMENT_CONFIG_UPDATE, enabled=config.enabled, method=config.method)
    return config


def resolve_xorpay_credentials(
    config: Optional[PaymentConfig], appid: str = "", payment_type: str = ""
) -> Tuple[str, str]:
    """
    选择虎皮椒凭据：
    - 回调带 appid 时，按 appid 匹配渠道凭据
    - 下单时按 payment_type（wechat/alipay）选渠道凭据
    - 都没有则使用默认凭据
    """
    if not config or not config.xorpay:
        raise PaymentConfigNotReady("支付配置未设置")
    xorpay = config.xorpay
    if appid:
        for item in xorpay.channels.values():
            if item.app_id and item.app_id == appid:
                return item.app_id, reveal(item.app_secret)
    elif payment_type:
        item = xorpay.channels.get(payment_type)
        if item and item.app_id and reveal(item.app_secret):
            return item.app_id, reveal(item.app_secret)
    if not xorpay.app_id or not reveal(xorpay.app_secret):
        raise PaymentConfigNotReady("虎皮椒配置不完整")
    return xorpay.app_id, reveal(xorpay.app_secret)


def public_payment_status(config: Optional[PaymentConfig]) -> Dict:
    if not config:
        return {"enabled": False, "enabled_methods": [], "method": ""}
    return {
        "enabled": bool(config.enabled),
        "enabled_methods": list(config.enabled_methods) if config.enabled else [],
        "method": config.method,
    }
