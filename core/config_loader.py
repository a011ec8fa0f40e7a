import yaml
import os
from datetime import time
from typing import Dict
from pydantic import BaseModel, Field, field_validator


class DatabaseConfig(BaseModel):
    url: str = "sqlite:///notifications.db"
    echo: bool = False


class PreferenceDefaults(BaseModel):
    """
    Values given to a user's preference row when it is created lazily.

    SMS and marketing are opt-in; quiet hours are off but preset to a
    22:00-08:00 window so enabling them needs no further input.
    """
    push_enabled: bool = True
    email_enabled: bool = True
    sms_enabled: bool = False
    in_app_enabled: bool = True
    marketing_enabled: bool = False
    quiet_hours_enabled: bool = False
    quiet_hours_start: time = time(22, 0)
    quiet_hours_end: time = time(8, 0)
    timezone: str = "UTC"
    language: str = "en"


class RateLimitConfig(BaseModel):
    enabled: bool = True
    max_sends: int = Field(default=3, ge=1)
    window_seconds: int = Field(default=3600, ge=1)
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "notification:rate:"
    # Use a per-process limiter when Redis is unreachable (single instance only)
    allow_local_fallback: bool = False


class DispatchConfig(BaseModel):
    send_timeout_seconds: float = Field(default=30, gt=0)
    parallel_channels: bool = False  # Attempt channels of one dispatch concurrently
    max_channel_workers: int = Field(default=4, ge=1)


class QueueConfig(BaseModel):
    batch_size: int = Field(default=50, ge=1)
    default_max_attempts: int = Field(default=3, ge=1)
    backoff_base_minutes: int = Field(default=5, ge=1)  # next attempt after base**attempts minutes
    worker_count: int = Field(default=4, ge=1)
    claim_timeout_minutes: int = 30
    poll_interval_seconds: int = 60
    processed_retention_days: int = 7
    expired_notification_retention_days: int = 30


class TemplateConfig(BaseModel):
    default_language: str = "en"
    use_generic_fallback: bool = True


class NotificationConfig(BaseModel):
    """
    Configuration for notification routing and delivery.
    """
    dry_run: bool = False

    # Channel name -> "module:Class" of a ChannelAdapter subclass
    adapters: Dict[str, str] = {}

    preference_defaults: PreferenceDefaults = Field(default_factory=PreferenceDefaults)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    templates: TemplateConfig = Field(default_factory=TemplateConfig)

    @field_validator('adapters')
    @classmethod
    def _known_channels(cls, value: Dict[str, str]) -> Dict[str, str]:
        unknown = set(value) - {'push', 'email', 'sms', 'in_app'}
        if unknown:
            raise ValueError(f"Unknown channels in adapters: {', '.join(sorted(unknown))}")
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class AppConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(config_path: str = "config.yaml") -> AppConfig:
    # If not found at relative path (e.g. running from another directory), try the project root
    if not os.path.exists(config_path):
        base_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(base_dir, "..", os.path.basename(config_path))

    data = {}
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

    # Empty sections in YAML load as None; let the model defaults apply
    data = {key: value for key, value in data.items() if value is not None}

    # Allow env var override for DB URL
    env_db_url = os.environ.get("DATABASE_URL")
    if env_db_url:
        if not data.get('database'):
            data['database'] = {}
        data['database']['url'] = env_db_url

    notifications = data.get('notifications') or {}

    # Allow env var override for Redis URL
    env_redis_url = os.environ.get("REDIS_URL")
    if env_redis_url:
        if not notifications.get('rate_limit'):
            notifications['rate_limit'] = {}
        notifications['rate_limit']['redis_url'] = env_redis_url

    env_dry_run = os.environ.get("NOTIFICATION_DRY_RUN")
    if env_dry_run:
        notifications['dry_run'] = env_dry_run.lower() in ('true', '1', 'yes')

    data['notifications'] = notifications

    return AppConfig(**data)
