import os
import re
from typing import Any

import yaml

VERSION = "1.0.0"
API_BASE = "/api/v1"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class Config:
    """YAML 配置，支持 a.b.c 形式读取和 ${ENV:-default} 环境变量替换"""

    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv("CONFIG_FILE", "config.yaml")
        self.config = {}
        self.reload()

    def reload(self):
        if not os.path.exists(self.config_path):
            self.config = {}
            return self.config
        with open(self.config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        self.config = data if isinstance(data, dict) else {}
        return self.config

    def replace_env_vars(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self.replace_env_vars(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.replace_env_vars(v) for v in value]
        if not isinstance(value, str):
            return value

        def _sub(match):
            return os.getenv(match.group(1), match.group(2) or "")

        return _ENV_PATTERN.sub(_sub, value)

    def get(self, key: str, default: Any = None) -> Any:
        current: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        value = self.replace_env_vars(current)
        if value is None or value == "":
            return default
        return value


cfg = Config()
