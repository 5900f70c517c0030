"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    provider_priority: List[str] = Field(
        default_factory=lambda: ["openai", "gemini", "claude"],
        description="Provider 选择顺序，第一个启用的生效",
    )

    # OpenAI
    openai_enable: bool = Field(default=False, description="是否启用 OpenAI")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(default="https://api.openai.com", description="OpenAI API 基础URL")
    openai_model: str = Field(default="gpt-3.5-turbo", description="OpenAI 模型名")

    # Gemini
    gemini_enable: bool = Field(default=False, description="是否启用 Gemini")
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_model: str = Field(default="gemini-pro", description="Gemini 模型名")

    # Claude
    claude_enable: bool = Field(default=False, description="是否启用 Claude")
    claude_api_key: Optional[str] = Field(default=None, description="Claude API 密钥")
    claude_base_url: str = Field(default="https://api.anthropic.com", description="Claude API 基础URL")
    claude_model: str = Field(default="claude-3-opus-20240229", description="Claude 模型名")
    claude_max_tokens: int = Field(default=2048, ge=1, description="Claude 单次回复最大 token 数")

    # ---- 会话历史存储 ----
    redis_enable: bool = Field(default=False, description="是否使用 Redis 保存会话历史")
    redis_addr: str = Field(default="localhost:6379", description="Redis 地址 host:port")
    redis_username: Optional[str] = Field(default=None, description="Redis 用户名")
    redis_password: Optional[str] = Field(default=None, description="Redis 密码")
    redis_db: int = Field(default=0, ge=0, description="Redis DB 编号")
    session_capacity: int = Field(default=6, ge=1, le=100, description="每个用户保留的最大会话长度")

    # ---- 并发与超时 ----
    response_ttl: float = Field(default=120.0, gt=0, description="回包缓存时效（秒），同时也是异步等待的超时")
    stream_max_wait: float = Field(default=60.0, gt=0, description="流式读取的最长时间（秒）")
    stream_max_empty_messages: int = Field(default=10, ge=1, description="流式连续空消息上限")
    http_timeout: float = Field(default=10.0, ge=1.0, description="HTTP 超时时间（秒）")

    continue_phrase: str = Field(default="继续", description="获取异步结果的用户指令")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
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

    @field_validator("openai_api_key", "gemini_api_key", "claude_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("provider_priority")
    @classmethod
    def normalize_priority(cls, v: List[str]) -> List[str]:
        return [name.strip().lower() for name in v if name and name.strip()]

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


settings = Settings()
