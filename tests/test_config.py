import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from config import Config


def test_from_env_reads_overrides(monkeypatch):
    monkeypatch.setenv("NOVEL_MODEL", "deepseek-chat")
    monkeypatch.setenv("NOVEL_API_KEY_ENV", "DEEPSEEK_API_KEY")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-test")
    monkeypatch.setenv("NOVEL_RETRY_BACKOFF_MS", "500")
    monkeypatch.setenv("NOVEL_DEFAULT_CHAPTERS", "24")

    config = Config.from_env()

    assert config.model_name == "deepseek-chat"
    assert config.api_key == "sk-test"
    assert config.retry_backoff == 0.5
    assert config.default_chapters == 24


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("NOVEL_MAX_RETRIES", "三次")
    monkeypatch.setenv("NOVEL_OUTPUT_DIR", "   ")
    monkeypatch.setenv("NOVEL_JOB_TIMEOUT_MIN", "0")

    config = Config.from_env()

    assert config.max_retries == 3
    assert config.output_dir == "./output"
    # 非正值按 60 分钟处理
    assert config.job_timeout == 3600.0
