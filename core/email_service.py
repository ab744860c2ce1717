"""
邮件发送：SMTP 或 Resend API

配置优先读数据库（后台可改），未启用时回退到 config.yaml 的 email.* / 环境变量。
发送失败只记日志并返回 False，不影响主流程。
"""

import os
import smtplib
from datetime import datetime
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Optional, Tuple

import requests
from pydantic import BaseModel, SecretStr, field_validator

from core.config import cfg
from core.events import E, log_event
from core.log import get_logger
from core.secret import REVEAL, MaskedSecret, keep_secret, reveal
from core.setting_service import EMAIL_SETTINGS_KEY, get_setting, set_setting

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
EMAIL_PROVIDERS = ("smtp", "resend")
DEFAULT_FROM_NAME = "会员中心"


class SmtpSettings(BaseModel):
    host: str = ""
    port: int = 465
    secure: bool = True
    user: str = ""
    password: MaskedSecret = SecretStr("")


class EmailSettings(BaseModel):
    enabled: bool = False
    provider: str = "smtp"
    smtp: Optional[SmtpSettings] = None
    resend_api_key: MaskedSecret = SecretStr("")
    from_email: str = ""
    from_name: str = DEFAULT_FROM_NAME

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in EMAIL_PROVIDERS:
            raise ValueError("无效的邮件服务商")
        return value


def default_email_settings() -> EmailSettings:
    return EmailSettings(smtp=SmtpSettings())


def get_email_settings(session) -> Optional[EmailSettings]:
    stored = get_setting(session, EMAIL_SETTINGS_KEY)
    if stored is None:
        return None
    return EmailSettings.model_validate(stored)


def _settings_from_config() -> Optional[EmailSettings]:
    resend_key = cfg.get("email.resend_api_key") or os.getenv("RESEND_API_KEY", "")
    from_name = cfg.get("email.from_name") or os.getenv("EMAIL_FROM_NAME", "") or DEFAULT_FROM_NAME
    if resend_key:
        return EmailSettings(
            enabled=True,
            provider="resend",
            resend_api_key=resend_key,
            from_email=cfg.get("email.from_email") or os.getenv("EMAIL_FROM", "noreply@example.com"),
            from_name=from_name,
        )
    host = cfg.get("email.smtp.host") or os.getenv("SMTP_HOST", "")
    user = cfg.get("email.smtp.user") or os.getenv("SMTP_USER", "")
    password = cfg.get("email.smtp.password") or os.getenv("SMTP_PASS", "")
    if host and user and password:
        secure = cfg.get("email.smtp.secure", os.getenv("SMTP_SECURE", "true"))
        return EmailSettings(
            enabled=True,
            provider="smtp",
            smtp=SmtpSettings(
                host=host,
                port=int(cfg.get("email.smtp.port") or os.getenv("SMTP_PORT", "465")),
                secure=str(secure).lower() != "false",
                user=user,
                password=password,
            ),
            from_email=cfg.get("email.from_email") or os.getenv("EMAIL_FROM", "") or user,
            from_name=from_name,
        )
    return None


def resolve_email_settings(session) -> Optional[EmailSettings]:
    """实际发信使用的配置：数据库已启用的配置优先"""
    stored = get_email_settings(session)
    if stored and stored.enabled:
        return stored
    return _settings_from_config()


def merge_email_settings(session, data: Dict) -> EmailSettings:
    """解析后台提交的配置，占位符密钥沿用已存储的值"""
    if not isinstance(data, dict):
        raise ValueError("无效的配置数据")
    incoming = EmailSettings.model_validate(data)
    stored = get_email_settings(session)
    if stored:
        incoming.resend_api_key = keep_secret(incoming.resend_api_key, stored.resend_api_key)
        if incoming.smtp and stored.smtp:
            incoming.smtp.password = keep_secret(incoming.smtp.password, stored.smtp.password)
    return incoming


def save_email_settings(session, data: Dict) -> EmailSettings:
    settings = merge_email_settings(session, data)
    if settings.provider == "smtp" and settings.enabled:
        if not settings.smtp or not settings.smtp.host or not settings.smtp.user:
            raise ValueError("请填写完整的 SMTP 配置")
    if settings.provider == "resend" and settings.enabled and not reveal(settings.resend_api_key):
        raise ValueError("请填写 Resend API Key")
    if settings.provider == "resend":
        settings.smtp = None
    else:
        settings.resend_api_key = SecretStr("")
    set_setting(session, EMAIL_SETTINGS_KEY, settings.model_dump(context=REVEAL))
    log_event(logger, E.EMAIL_CONFIG_UPDATE, enabled=settings.enabled, provider=settings.provider)
    return settings


def _sender(settings: EmailSettings) -> str:
    return formataddr((settings.from_name or DEFAULT_FROM_NAME, settings.from_email))


def _send_via_smtp(settings: EmailSettings, to: str, subject: str, html: str, text: str = ""):
    smtp = settings.smtp
    if not smtp or not smtp.host:
        raise ValueError("SMTP 配置缺失")
    msg = MIMEMultipart("alternative")
    msg["Subject"] = Header(subject, "utf-8")
    msg["From"] = _sender(settings)
    msg["To"] = to
    if text:
        msg.attach(MIMEText(text, "plain", "utf-8"))
    msg.attach(MIMEText(html, "html", "utf-8"))

    if smtp.secure:
        server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=30)
    else:
        server = smtplib.SMTP(smtp.host, smtp.port, timeout=30)
    with server:
        if not smtp.secure:
            server.starttls()
        if smtp.user:
            server.login(smtp.user, reveal(smtp.password))
        server.sendmail(settings.from_email or smtp.user, [to], msg.as_string())


def _send_via_resend(settings: EmailSettings, to: str, subject: str, html: str, text: str = ""):
    api_key = reveal(settings.resend_api_key)
    if not api_key:
        raise ValueError("Resend API Key 缺失")
    resp = requests.post(
        RESEND_API_URL,
        json={
            "from": f"{settings.from_name or DEFAULT_FROM_NAME} <{settings.from_email}>",
            "to": to,
            "subject": subject,
            "html": html,
            "text": text,
        },
        headers={"Authorization": f"Bearer {api_key}"},
        timeout=30,
    )
    if resp.status_code >= 300:
        raise RuntimeError(f"Resend API 错误: {resp.status_code} {resp.text[:200]}")


def send_email(settings: Optional[EmailSettings], to: str, subject: str, html: str, text: str = "") -> Tuple[bool, str]:
    """返回 (是否成功, 说明)"""
    if not settings or not settings.enabled:
        log_event(logger, E.EMAIL_SEND_SKIP, to=to, reason="disabled")
        return False, "邮件服务未启用"
    try:
        if settings.provider == "smtp":
            _send_via_smtp(settings, to, subject, html, text)
        else:
            _send_via_resend(settings, to, subject, html, text)
    except (smtplib.SMTPException, OSError, requests.RequestException, ValueError, RuntimeError) as e:
        log_event(logger, E.EMAIL_SEND_FAIL, level="error", to=to, provider=settings.provider, error=e)
        return False, f"发送失败: {e}"
    log_event(logger, E.EMAIL_SEND_COMPLETE, to=to, provider=settings.provider)
    return True, "发送成功"


def _site_name() -> str:
    return cfg.get("site.name") or cfg.get("app_name") or DEFAULT_FROM_NAME


def render_invite_code_email(code: str, membership_name: str, site_name: str) -> Tuple[str, str, str]:
    subject = f"【{site_name}】您的邀请码"
    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;line-height:1.6;color:#333;">
<div style="max-width:600px;margin:0 auto;padding:20px;">
  <h1 style="color:#4F46E5;text-align:center;">{site_name}</h1>
  <p>您好！</p>
  <p>感谢您的购买！以下是您的邀请码：</p>
  <div style="background:#4F46E5;border-radius:12px;padding:30px;text-align:center;margin:20px 0;">
    <span style="font-size:32px;font-weight:bold;color:#fff;letter-spacing:4px;font-family:monospace;">{code}</span>
  </div>
  <p><strong>会员类型：</strong>{membership_name}</p>
  <ul>
    <li>每个邀请码只能使用一次</li>
    <li>请妥善保管，不要泄露给他人</li>
    <li>如有问题，请联系客服</li>
  </ul>
  <p style="text-align:center;color:#6B7280;font-size:14px;">此邮件由系统自动发送，请勿直接回复<br>&copy; {datetime.now().year} {site_name}</p>
</div>
</body>
</html>"""
    text = (
        f"【{site_name}】您的邀请码\n\n"
        f"感谢您的购买！以下是您的邀请码：\n\n{code}\n\n"
        f"会员类型：{membership_name}\n\n"
        "每个邀请码只能使用一次，请妥善保管，不要泄露给他人。\n"
        "此邮件由系统自动发送，请勿直接回复\n"
    )
    return subject, html, text


def send_invite_code_email(session, to: str, code: str, membership_name: str) -> bool:
    subject, html, text = render_invite_code_email(code, membership_name, _site_name())
    ok, _ = send_email(resolve_email_settings(session), to, subject, html, text)
    return ok


def send_test_email(settings: EmailSettings, to: str) -> Tuple[bool, str]:
    site_name = _site_name()
    subject = f"【{site_name}】邮件配置测试"
    html = f"<p>这是一封测试邮件，收到说明 {site_name} 的邮件配置可用。</p>"
    text = f"这是一封测试邮件，收到说明 {site_name} 的邮件配置可用。"
    # 测试时忽略 enabled 开关
    return send_email(settings.model_copy(update={"enabled": True}), to, subject, html, text)
