from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from utils.constants import DEFAULT_MANAGER_ADDRESS, DEFAULT_SUPPORT_ADDRESS

STORAGE_BACKENDS = ("memory", "database", "redis")
NOTIFICATION_SINKS = ("log", "webhook")


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class StorageConfig:
    backend: str = "database"
    database_url: str = "sqlite:///./data/tracker.db"
    redis_url: str = "redis://localhost:6379/0"
    pool_min_size: int = 1
    pool_max_size: int = 5
    timeout_seconds: int = 30


@dataclass(slots=True)
class NotificationConfig:
    support_address: str = DEFAULT_SUPPORT_ADDRESS
    manager_address: str = DEFAULT_MANAGER_ADDRESS
    sink: str = "log"
    webhook_url: str = ""
    webhook_timeout_seconds: int = 10
    send_delay_ms: int = 0


@dataclass(slots=True)
class EscalationConfig:
    enabled: bool = True
    interval_seconds: int = 60


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "tracker.log"
    file_enabled: bool = True
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class ApiConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


@dataclass(slots=True)
class AppConfig:
    storage: StorageConfig
    notifications: NotificationConfig
    escalation: EscalationConfig
    logging: LoggingConfig
    api: ApiConfig
    seed_demo_data: bool = False

    @classmethod
    def defaults(cls) -> AppConfig:
        return cls(
            storage=StorageConfig(),
            notifications=NotificationConfig(),
            escalation=EscalationConfig(),
            logging=LoggingConfig(),
            api=ApiConfig(),
        )


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _choice(value: str, allowed: tuple[str, ...], name: str) -> str:
    normalized = value.strip().lower()
    if normalized not in allowed:
        raise ConfigError(f"{name} must be one of {', '.join(allowed)} (got {value!r})")
    return normalized


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    storage_cfg = StorageConfig(
        backend=_choice(
            str(_get_env_str("STORAGE_BACKEND", _deep_get(raw, "storage", "backend", default="database"))),
            STORAGE_BACKENDS,
            "storage.backend",
        ),
        database_url=str(
            _get_env_str(
                "DATABASE_URL",
                _deep_get(raw, "storage", "database_url", default="sqlite:///./data/tracker.db"),
            )
        ),
        redis_url=str(
            _get_env_str("REDIS_URL", _deep_get(raw, "storage", "redis_url", default="redis://localhost:6379/0"))
        ),
        pool_min_size=_as_int(_deep_get(raw, "storage", "pool_min_size"), 1),
        pool_max_size=_as_int(_deep_get(raw, "storage", "pool_max_size"), 5),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "storage", "timeout_seconds"), 30),
        ),
    )

    notification_cfg = NotificationConfig(
        support_address=str(
            _deep_get(raw, "notifications", "support_address", default=DEFAULT_SUPPORT_ADDRESS)
        ),
        manager_address=str(
            _deep_get(raw, "notifications", "manager_address", default=DEFAULT_MANAGER_ADDRESS)
        ),
        sink=_choice(
            str(_deep_get(raw, "notifications", "sink", default="log")),
            NOTIFICATION_SINKS,
            "notifications.sink",
        ),
        webhook_url=str(
            _get_env_str("NOTIFY_WEBHOOK_URL", _deep_get(raw, "notifications", "webhook_url", default=""))
        ),
        webhook_timeout_seconds=_as_int(_deep_get(raw, "notifications", "webhook_timeout_seconds"), 10),
        send_delay_ms=max(0, _as_int(_deep_get(raw, "notifications", "send_delay_ms"), 0)),
    )
    if notification_cfg.sink == "webhook" and not notification_cfg.webhook_url:
        raise ConfigError("notifications.webhook_url is required when sink is 'webhook'")

    escalation_cfg = EscalationConfig(
        enabled=_as_bool(_deep_get(raw, "escalation", "enabled"), True),
        interval_seconds=max(1, _as_int(_deep_get(raw, "escalation", "interval_seconds"), 60)),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="tracker.log")),
        file_enabled=_as_bool(_deep_get(raw, "logging", "file_enabled"), True),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    api_cfg = ApiConfig(
        enabled=_as_bool(_deep_get(raw, "api", "enabled"), True),
        host=str(_deep_get(raw, "api", "host", default="0.0.0.0")),
        port=_as_int(_get_env_str("API_PORT", None), _as_int(_deep_get(raw, "api", "port"), 8000)),
        api_key=str(_get_env_str("TRACKER_API_KEY", _deep_get(raw, "api", "api_key", default=""))),
    )

    return AppConfig(
        storage=storage_cfg,
        notifications=notification_cfg,
        escalation=escalation_cfg,
        logging=logging_cfg,
        api=api_cfg,
        seed_demo_data=_as_bool(_deep_get(raw, "seed_demo_data"), False),
    )
