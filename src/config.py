"""
配置管理
"""
import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    """读取整数环境变量，非法值回退默认值。"""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """读取字符串环境变量，空值回退默认值。"""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class Config:
    """运行配置，显式传递给客户端、管线与任务管理器。"""

    # 模型服务
    model_name: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None

    # 请求策略
    request_timeout_sec: int = 180
    max_retries: int = 3
    retry_backoff_ms: int = 2000
    job_timeout_min: int = 60

    # 存储
    output_dir: str = "./output"

    # 生成参数
    default_chapter_words: int = 1500
    default_chapters: int = 10
    default_preset: str = "generic"
    chunk_chars: int = 8000

    @property
    def retry_backoff(self) -> float:
        """重试间隔（秒）。"""
        return max(0, self.retry_backoff_ms) / 1000.0

    @property
    def job_timeout(self) -> float:
        """单个任务的总时限（秒），非正值回退 60 分钟。"""
        minutes = self.job_timeout_min if self.job_timeout_min > 0 else 60
        return minutes * 60.0

    @classmethod
    def from_env(cls) -> "Config":
        """从环境变量加载配置"""
        key_env = _env_str("NOVEL_API_KEY_ENV", "OPENAI_API_KEY")
        return cls(
            model_name=_env_str("NOVEL_MODEL", cls.model_name),
            base_url=_env_str("NOVEL_BASE_URL", cls.base_url),
            api_key=os.getenv(key_env),
            request_timeout_sec=_env_int("NOVEL_REQUEST_TIMEOUT_SEC", cls.request_timeout_sec),
            max_retries=_env_int("NOVEL_MAX_RETRIES", cls.max_retries),
            retry_backoff_ms=_env_int("NOVEL_RETRY_BACKOFF_MS", cls.retry_backoff_ms),
            job_timeout_min=_env_int("NOVEL_JOB_TIMEOUT_MIN", cls.job_timeout_min),
            output_dir=_env_str("NOVEL_OUTPUT_DIR", cls.output_dir),
            default_chapter_words=_env_int("NOVEL_DEFAULT_CHAPTER_WORDS", cls.default_chapter_words),
            default_chapters=_env_int("NOVEL_DEFAULT_CHAPTERS", cls.default_chapters),
            default_preset=_env_str("NOVEL_DEFAULT_PRESET", cls.default_preset),
            chunk_chars=_env_int("NOVEL_CHUNK_CHARS", cls.chunk_chars),
        )
