"""应用配置，基于 Pydantic Settings。"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（pyproject.toml 所在位置）
_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """全局配置，支持 .env 文件和环境变量。"""

    model_config = SettingsConfigDict(
        env_file=str(_ROOT / ".env"),
        env_file_encoding="utf-8",
        env_prefix="INSIGHTOS_",
        extra="ignore",
    )

    # ---- 基础 ----
    app_name: str = "InsightOS"
    debug: bool = False

    # ---- 上传 ----
    max_upload_size: int = 20 * 1024 * 1024  # 20 MB
    allowed_extensions: str = "csv,json"

    # ---- 活动日志 ----
    activity_log_max_entries: int = 100  # 超出后丢弃最旧条目

    # ---- 规划器 ----
    planner_backend: str = "rule"  # rule|llm
    planner_sample_rows: int = 10

    # ---- 分析 ----
    analytics_top_values: int = 10

    # ---- LLM（OpenAI 兼容接口）----
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.1
    llm_max_retries: int = 2
    llm_timeout: int = 60  # HTTP 请求超时（秒）

    # ---- 派生属性 ----
    @property
    def allowed_extensions_list(self) -> list[str]:
        return [ext.strip().lower() for ext in self.allowed_extensions.split(",") if ext.strip()]

    @property
    def llm_enabled(self) -> bool:
        return self.planner_backend == "llm" and bool(self.openai_api_key)


# 全局单例
settings = Settings()
