import json
import time
from typing import Dict, Optional

from core.models.app_setting import AppSetting

PAYMENT_CONFIG_KEY = "payment_config"
MEMBERSHIP_CONFIG_KEY = "membership_config"
EMAIL_SETTINGS_KEY = "email_settings"
PURCHASE_LIMIT_CONFIG_KEY = "purchase_limit_config"


def now_ms() -> int:
    return int(time.time() * 1000)


def get_setting(session, key: str) -> Optional[Dict]:
    item = session.query(AppSetting).filter(AppSetting.key == key).first()
    if not item:
        return None
    try:
        data = json.loads(item.value_json or "{}")
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def set_setting(session, key: str, value: Dict) -> Dict:
    item = session.query(AppSetting).filter(AppSetting.key == key).first()
    if not item:
        item = AppSetting(key=key)
        session.add(item)
    item.value_json = json.dumps(value or {}, ensure_ascii=False)
    item.updated_at = now_ms()
    session.commit()
    return value
