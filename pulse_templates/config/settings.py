"""
全局配置设置 - 模板引擎
"""
from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """模板引擎配置"""

    # 基础配置
    PROJECT_NAME: str = "Z-Pulse 摘要模板引擎"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")

    # 日志配置
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")
    LOG_DIR: Optional[str] = Field(default=None)

    # 缓存配置
    CACHE_ENABLED: bool = Field(default=True)
    CACHE_MAX_BYTES: int = Field(default=100 * 1024 * 1024)  # 100MB
    CACHE_TTL_SECONDS: float = Field(default=3600.0)  # 1小时
    CACHE_CLEANUP_INTERVAL_SECONDS: float = Field(default=300.0)  # 5分钟
    CACHE_EVICTION_POLICY: str = Field(default="lru")

    # 引擎配置
    STRICT_MODE: bool = Field(default=False)
    VALIDATION_ENABLED: bool = Field(default=True)
    LOADER_TIMEOUT_SECONDS: Optional[float] = Field(default=30.0)
    DEFAULT_LANGUAGE: str = Field(default="zh")
    FALLBACK_LANGUAGE: str = Field(default="en")

    # 格式化配置
    CURRENCY_SYMBOL: str = Field(default="¥")

    # 校验配置（逗号分隔）
    REQUIRED_SECTIONS: Annotated[List[str], NoDecode] = Field(default=["header", "body", "footer"])
    ALLOWED_FORMATS: Annotated[List[str], NoDecode] = Field(default=["markdown", "plain"])

    model_config = SettingsConfigDict(
        env_prefix="PULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("REQUIRED_SECTIONS", "ALLOWED_FORMATS", mode="before")
    @classmethod
    def _split_csv(cls, v):
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        return v

    @field_validator("CACHE_EVICTION_POLICY")
    @classmethod
    def _check_policy(cls, v: str) -> str:
        policy = (v or "").strip().lower()
        if policy not in ("lru", "fifo", "lfu"):
            raise ValueError(f"unsupported eviction policy: {v}")
        return policy


# 创建全局配置实例
settings = Settings()
