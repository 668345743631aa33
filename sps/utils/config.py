"""
Configuration management with schema validation.
Single source of truth for SPS API configuration.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from .exceptions import ConfigError

# Load environment variables
load_dotenv()

CONFIG_DIR = Path(os.getenv("SPS_CONFIG_DIR", "config"))
SETTINGS_FILE = CONFIG_DIR / "settings.yaml"

DEV_JWT_SECRET = "sps-secret-key-development-2024"

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str, default: int = 7 * 24 * 3600) -> int:
    """Convert "30s" / "15m" / "24h" / "7d" into seconds."""
    match = _DURATION_RE.match(str(value).strip())
    if not match:
        return default
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


class AppSettings(BaseModel):
    name: str = "SPS User API"
    version: str = "2.0.0"
    environment: str = "development"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000


class JWTSettings(BaseModel):
    secret: str = DEV_JWT_SECRET
    algorithm: str = "HS256"
    expires_in: str = "24h"
    refresh_expires_in: str = "7d"

    @property
    def access_ttl(self) -> int:
        return parse_duration(self.expires_in, default=24 * 3600)

    @property
    def refresh_ttl(self) -> int:
        return parse_duration(self.refresh_expires_in)


class SecuritySettings(BaseModel):
    bcrypt_rounds: int = Field(default=12, ge=10, le=20)
    admin_name: str = "admin"
    admin_email: str = "admin@spsgroup.com.br"
    admin_password: str = "1234"
    password_min_length: int = 8
    password_max_length: int = 128


class RateLimitSettings(BaseModel):
    enabled: bool = True
    window_ms: int = 15 * 60 * 1000
    max: int = 100


class CacheSettings(BaseModel):
    enabled: bool = True
    default_ttl: int = 300
    user_ttl: int = 600


class RedisSettings(BaseModel):
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    socket_timeout: float = 0.5
    socket_connect_timeout: float = 0.5


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file_path: Optional[str] = None
    max_bytes: int = 10485760
    backup_count: int = 5


class MetricsSettings(BaseModel):
    enabled: bool = True
    retention_days: int = 30


class RetentionSettings(BaseModel):
    enabled: bool = False
    run_at: str = "03:00"


class CorsSettings(BaseModel):
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3001"])


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    retention: RetentionSettings = Field(default_factory=RetentionSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)


def validate_settings(settings: Settings) -> Settings:
    """Reject configurations that must never reach production."""
    if not settings.jwt.secret:
        raise ConfigError("JWT secret is required")
    if settings.app.is_production and settings.jwt.secret == DEV_JWT_SECRET:
        raise ConfigError("JWT secret cannot be the development default in production")
    return settings


class ConfigManager:
    """Singleton configuration manager"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.settings_path = SETTINGS_FILE
        self._settings: Optional[Settings] = None

        self._initialized = True

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables"""
        if isinstance(value, str):
            if value.startswith("${") and value.endswith("}"):
                var_expr = value[2:-1]
                if ":" in var_expr:
                    var_name, default = var_expr.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                else:
                    return os.getenv(var_expr, value)
        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]
        return value

    def load_settings(self, path: Optional[Path] = None) -> Settings:
        """Load and validate settings.yaml"""
        settings_path = Path(path) if path else self.settings_path
        if not settings_path.exists():
            raise ConfigError(f"Settings file not found: {settings_path}")

        try:
            with open(settings_path, "r", encoding="utf-8") as f:
                raw_data: Dict[str, Any] = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {settings_path}: {e}")

        processed_data = self._substitute_env_vars(raw_data)
        try:
            settings = Settings(**processed_data)
        except ValueError as e:
            raise ConfigError(f"Invalid settings in {settings_path}: {e}")
        self._settings = validate_settings(settings)
        return self._settings

    @property
    def settings(self) -> Settings:
        """Loaded settings; falls back to defaults when no file is present."""
        if self._settings is None:
            if self.settings_path.exists():
                return self.load_settings()
            self._settings = validate_settings(Settings())
        return self._settings


# Global instance
config_manager = ConfigManager()
