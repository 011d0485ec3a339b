"""
cogni.core.settings
~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Cogni Rooms Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── API Keys ──────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(..., description="Google Gemini API Key")
    TAVILY_API_KEY: str | None = Field(
        default=None,
        description="Tavily 搜索 API Key（为空时搜索降级为无上下文）",
    )

    # ── LLM ───────────────────────────────────────────────────────────
    GEMINI_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="生成回复使用的 Gemini 模型",
    )
    CLASSIFIER_MODEL: str = Field(
        default="gemini-2.5-flash-lite",
        description="是否回复 / 任务路由判定使用的轻量模型",
    )
    GENERATION_TEMPERATURE: float = Field(default=0.7, description="生成温度")
    GENERATION_MAX_TOKENS: int = Field(default=1000, description="单次回复最大 token 数")

    # ── 助手人设 ──────────────────────────────────────────────────────
    ASSISTANT_NAME: str = Field(default="Cogni", description="AI 参与者的显示名称")

    # ── 房间 / 决策 ───────────────────────────────────────────────────
    ROOM_HISTORY_LIMIT: int = Field(default=200, ge=1, description="每个房间内存中保留的消息条数")
    DECISION_HISTORY_TURNS: int = Field(default=3, ge=0, description="决策分类器可见的历史条数")
    PROMPT_HISTORY_TURNS: int = Field(default=5, ge=0, description="生成 Prompt 中携带的历史轮数")
    HIGH_CONFIDENCE_THRESHOLD: int = Field(default=70, description="立即回复的置信度下限")
    MEDIUM_CONFIDENCE_THRESHOLD: int = Field(default=40, description="延迟回复的置信度下限")
    MEDIUM_CONFIDENCE_DELAY: float = Field(default=1.5, ge=0, description="中等置信度回复前的人为延迟（秒）")

    # ── 搜索 ──────────────────────────────────────────────────────────
    TAVILY_BASE_URL: str = Field(default="https://api.tavily.com", description="Tavily API 地址")
    SEARCH_MAX_RESULTS: int = Field(default=3, ge=2, le=5, description="单次搜索保留的结果数")
    SEARCH_DEPTH: Literal["basic", "advanced"] = Field(default="advanced", description="搜索深度")
    SEARCH_TIMEOUT: float = Field(default=15.0, description="搜索请求超时（秒）")

    # ── WebSocket ─────────────────────────────────────────────────────
    WS_RATE_LIMIT_INTERVAL: float = Field(default=0.5, ge=0, description="同一连接两次发言的最小间隔（秒）")

    # ── MongoDB（可选）────────────────────────────────────────────────
    MONGO_URI: str | None = Field(default=None, description="MongoDB 连接串，为空时不持久化")
    MONGO_DB_NAME: str = Field(default="cogni", description="MongoDB 数据库名")

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3001, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def search_enabled(self) -> bool:
        """是否配置了外部搜索能力。"""
        return bool(self.TAVILY_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
