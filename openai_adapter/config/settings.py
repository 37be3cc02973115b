"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级从高到低：
构造参数 > 环境变量 > .env > YAML 配置文件 > 默认值。
"""

import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BASE_URL = "https://api.openai.com/v1"
MIN_TIMEOUT = 10.0
MAX_TIMEOUT = 300.0


@dataclass(frozen=True)
class RateLimitTier:
    requests_per_minute: int
    tokens_per_minute: int
    enable_backoff: bool = True


RATE_LIMIT_TIERS: Mapping[str, RateLimitTier] = {
    "default": RateLimitTier(3_500, 90_000),
    "tier1": RateLimitTier(500, 30_000),
    "tier2": RateLimitTier(3_500, 90_000),
    "tier3": RateLimitTier(10_000, 150_000),
    "unlimited": RateLimitTier(2**31 - 1, 2**31 - 1, enable_backoff=False),
}


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("ADAPTER_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class AdapterSettings(BaseSettings):
    """适配器配置（使用 Pydantic）。"""

    # ---- 接口与认证 ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default=DEFAULT_BASE_URL, description="API 基础URL，可指向兼容服务")
    openai_organization: Optional[str] = Field(default=None, description="OpenAI-Organization 请求头")
    default_model: str = Field(default="gpt-4o", description="默认模型 ID")
    http_timeout: float = Field(default=120.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 客户端限流 ----
    rate_limit_tier: Optional[str] = Field(default=None, description="预设限流档位，如 tier1、tier3")
    requests_per_minute: int = Field(default=3_500, ge=1, description="每分钟请求数上限")
    tokens_per_minute: int = Field(default=90_000, ge=1, description="每分钟 token 上限（仅记录，不强制）")
    enable_rate_limit: bool = Field(default=True, description="是否启用客户端限流等待")

    # ---- 重试 ----
    retry_max_attempts: int = Field(default=3, ge=1, le=10, description="最大尝试次数（含首次）")
    retry_initial_delay: float = Field(default=1.0, ge=0.0, description="首次退避时间（秒）")
    retry_max_delay: float = Field(default=32.0, ge=0.0, description="退避时间上限（秒）")
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0, description="退避倍数")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录，留空则不写文件")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("openai_base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def apply_rate_limit_tier(self) -> "AdapterSettings":
        if self.rate_limit_tier:
            tier = RATE_LIMIT_TIERS.get(self.rate_limit_tier.lower())
            if tier is None:
                raise ValueError(f"Unknown rate limit tier: {self.rate_limit_tier!r}")
            self.requests_per_minute = tier.requests_per_minute
            self.tokens_per_minute = tier.tokens_per_minute
            self.enable_rate_limit = tier.enable_backoff
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


def clamp_timeout(timeout: float) -> float:
    """把超时时间限制在 [10, 300] 秒。"""
    return max(MIN_TIMEOUT, min(MAX_TIMEOUT, timeout))


def validate_settings(cfg: Any) -> List[str]:
    """检查配置并返回提示信息（不抛异常）。"""

    notes: List[str] = []
    key = getattr(cfg, "openai_api_key", None) or ""
    base_url = getattr(cfg, "openai_base_url", DEFAULT_BASE_URL) or DEFAULT_BASE_URL
    if key and base_url.rstrip("/") == DEFAULT_BASE_URL and not key.startswith("sk-"):
        notes.append("API key doesn't follow expected OpenAI format")
    timeout = getattr(cfg, "http_timeout", 120.0)
    if timeout < MIN_TIMEOUT:
        notes.append(f"Timeout value ({timeout}s) is very low and may cause frequent timeouts")
    if timeout > MAX_TIMEOUT:
        notes.append(f"Timeout value ({timeout}s) is very high")
    rpm = getattr(cfg, "requests_per_minute", 0)
    if getattr(cfg, "enable_rate_limit", True) and rpm > 10_000:
        notes.append(f"Rate limit ({rpm} RPM) exceeds typical OpenAI limits")
    return notes


settings = AdapterSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AdapterSettings
