import asyncio
import json
import logging
import os
import re
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from config import Config
from generation.presets import GENERIC_SETTING_SYSTEM
from generation.prompts import SYSTEM_AUDIT, SYSTEM_CHAPTER, SYSTEM_CHARACTERS, SYSTEM_OUTLINE, SYSTEM_PLANS
from jobs import JobManager, JobStatus
from jobs.models import can_transition
from models.base import ChatClient, ModelCallError
from schema.novel import Spec

TITLE = "西行 新记/外传"
LOG_LINE = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] \S")


class MockAI(ChatClient):
    def __init__(self, chapters=3, fail_on=None, chapter_delay=0.0):
        self.chapters = chapters
        self.fail_on = fail_on
        self.chapter_delay = chapter_delay
        self.calls = []

    async def chat(self, model, system, user, history=None):
        self.calls.append({"system": system, "user": user, "history": history})
        if system == self.fail_on:
            raise ModelCallError("模型服务不可用")
        if system == SYSTEM_OUTLINE:
            chapters = [{"index": i, "title": f"第{i}章", "summary": "取经"} for i in range(1, self.chapters + 1)]
            return json.dumps({"title": TITLE, "chapters": chapters}, ensure_ascii=False)
        if system == SYSTEM_CHARACTERS:
            return '[{"name":"孙悟空","role":"主角","traits":["机敏"],"background":"花果山"}]'
        if system == SYSTEM_PLANS:
            plans = [{"title": f"第{i}章", "summary": f"孙悟空第{i}难"} for i in range(1, self.chapters + 1)]
            return json.dumps(plans, ensure_ascii=False)
        if system == GENERIC_SETTING_SYSTEM:
            return '{"protagonist":{"goal":"成佛"}}'
        if system == SYSTEM_CHAPTER:
            if self.chapter_delay:
                await asyncio.sleep(self.chapter_delay)
            return f"正文（历史 {len(history or [])} 条）"
        if system == SYSTEM_AUDIT:
            return "[]"
        raise AssertionError(system)


def make_manager(tmp_path, ai, config_cls=Config):
    config = config_cls(output_dir=str(tmp_path / "output"), max_retries=1, retry_backoff_ms=0, request_timeout_sec=0)
    return JobManager(config, client_factory=lambda cfg: ai)


def run_job(manager, spec):
    async def go():
        job = manager.submit(spec)
        assert job.status == JobStatus.PENDING
        return await manager.wait(job.id)

    return asyncio.run(go())


def test_job_runs_to_completion(tmp_path):
    ai = MockAI(chapters=3)
    manager = make_manager(tmp_path, ai)
    job = run_job(manager, Spec(topic="西游", chapters=3))

    assert job.status == JobStatus.COMPLETED
    assert (job.completed, job.total) == (3, 3)
    assert job.error == ""
    assert job.work_dir == str(tmp_path / "output" / "jobs" / job.id)

    with open(os.path.join(job.work_dir, "progress.json"), encoding="utf-8") as f:
        assert json.load(f) == {"completed": 3, "total": 3}
    assert sorted(os.listdir(os.path.join(job.work_dir, "chapters"))) == ["01_第1章.md", "02_第2章.md", "03_第3章.md"]

    assert job.dir == str(tmp_path / "output" / "西行_新记-外传")
    assert sorted(os.listdir(job.dir)) == ["01_第1章.md", "02_第2章.md", "03_第3章.md"]

    assert job.log_path == os.path.join(job.work_dir, f"{job.id}.log")
    with open(job.log_path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert lines and all(LOG_LINE.match(line) for line in lines)
    assert any("[任务开始]" in line for line in lines)
    assert any("[任务完成]" in line for line in lines)


def test_spec_defaults_are_merged_before_running(tmp_path):
    ai = MockAI(chapters=10)
    manager = make_manager(tmp_path, ai)
    job = run_job(manager, Spec(topic="西游"))
    assert job.status == JobStatus.COMPLETED
    assert job.total == 10
    assert "共 10 章" in ai.calls[0]["user"]


def test_stage_failure_marks_job_failed(tmp_path):
    manager = make_manager(tmp_path, MockAI(fail_on=SYSTEM_CHARACTERS))
    job = run_job(manager, Spec(topic="西游", chapters=3))

    assert job.status == JobStatus.FAILED
    assert "模型服务不可用" in job.error
    with open(job.log_path, encoding="utf-8") as f:
        assert "[任务失败] 模型服务不可用" in f.read()
    assert not os.path.exists(tmp_path / "output" / "西行_新记-外传")


def test_client_factory_error_fails_job(tmp_path):
    def no_key(cfg):
        raise ValueError("缺少模型服务 API Key")

    manager = JobManager(Config(output_dir=str(tmp_path)), client_factory=no_key)
    job = run_job(manager, Spec(topic="西游", chapters=1))
    assert job.status == JobStatus.FAILED
    assert "API Key" in job.error


class FastTimeoutConfig(Config):
    @property
    def job_timeout(self):
        return 0.05


def test_job_deadline_fails_job(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=3, chapter_delay=5.0), config_cls=FastTimeoutConfig)
    job = run_job(manager, Spec(topic="西游", chapters=3))
    assert job.status == JobStatus.FAILED
    assert "超时" in job.error


def test_terminal_status_is_never_overwritten(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=1))
    job = run_job(manager, Spec(topic="西游", chapters=1))

    assert not manager._transition(manager._jobs, job.id, JobStatus.RUNNING)
    assert not manager._transition(manager._jobs, job.id, JobStatus.FAILED, error="late")
    snapshot = manager.get(job.id)
    assert snapshot.status == JobStatus.COMPLETED
    assert snapshot.error == ""

    assert can_transition(JobStatus.PENDING, JobStatus.RUNNING)
    assert not can_transition(JobStatus.RUNNING, JobStatus.PENDING)
    assert not can_transition(JobStatus.FAILED, JobStatus.COMPLETED)


def test_get_returns_a_copy(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=1))
    job = run_job(manager, Spec(topic="西游", chapters=1))
    snapshot = manager.get(job.id)
    snapshot.completed = 99
    assert manager.get(job.id).completed == 1


def test_job_is_reconstructed_from_disk(tmp_path):
    job = run_job(make_manager(tmp_path, MockAI(chapters=3)), Spec(topic="西游", chapters=3))

    fresh = make_manager(tmp_path, MockAI())
    loaded = fresh.load_job_from_disk(job.id)
    assert loaded.status == JobStatus.COMPLETED
    assert (loaded.completed, loaded.total) == (3, 3)
    assert loaded.dir == job.dir

    os.remove(os.path.join(job.work_dir, "chapters", "03_第3章.md"))
    partial = make_manager(tmp_path, MockAI()).get_or_load(job.id)
    assert partial.status == JobStatus.FAILED
    assert (partial.completed, partial.total) == (2, 3)
    assert partial.error

    assert fresh.get_or_load("job-missing") is None


def test_chapter_task_regenerates_with_prior_history(tmp_path):
    ai = MockAI(chapters=3)
    manager = make_manager(tmp_path, ai)
    job = run_job(manager, Spec(topic="西游", chapters=3))
    os.remove(os.path.join(job.work_dir, "chapters", "02_第2章.md"))

    async def go():
        task = manager.start_chapter_task(job.id, 3, words=300, instruction="加强冲突")
        return await manager.wait_chapter_task(task.id)

    ai.calls.clear()
    task = asyncio.run(go())
    assert task.status == JobStatus.COMPLETED
    assert task.path == os.path.join(job.work_dir, "chapters", "03_第3章.md")

    call = ai.calls[0]
    assert [m["role"] for m in call["history"]] == ["user", "assistant"]
    assert call["history"][1]["content"].startswith("# 第1章")
    assert "附加指令：加强冲突" in call["user"]
    assert "不少于300字" in call["user"]
    with open(task.path, encoding="utf-8") as f:
        assert f.read() == "# 第3章\n\n正文（历史 2 条）"
    with open(os.path.join(job.work_dir, "progress.json"), encoding="utf-8") as f:
        assert json.load(f) == {"completed": 2, "total": 3}


def test_chapter_task_for_unknown_plan_fails(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=2))
    job = run_job(manager, Spec(topic="西游", chapters=2))

    async def go():
        task = manager.start_chapter_task(job.id, 9)
        return await manager.wait_chapter_task(task.id)

    task = asyncio.run(go())
    assert task.status == JobStatus.FAILED
    assert task.error == "chapter plan not found"


class ProgressReadingAI(MockAI):
    """每次写章前读取 progress.json，记录当时的进度"""

    def __init__(self, jobs_root, **kwargs):
        super().__init__(**kwargs)
        self.jobs_root = jobs_root
        self.seen = []

    async def chat(self, model, system, user, history=None):
        if system == SYSTEM_CHAPTER:
            (job_id,) = os.listdir(self.jobs_root)
            with open(os.path.join(self.jobs_root, job_id, "progress.json"), encoding="utf-8") as f:
                self.seen.append(json.load(f))
        return await super().chat(model, system, user, history)


def test_progress_is_written_after_every_chapter(tmp_path):
    ai = ProgressReadingAI(str(tmp_path / "output" / "jobs"), chapters=3)
    job = run_job(make_manager(tmp_path, ai), Spec(topic="西游", chapters=3))

    assert job.status == JobStatus.COMPLETED
    assert ai.seen == [
        {"completed": 0, "total": 3},
        {"completed": 1, "total": 3},
        {"completed": 2, "total": 3},
    ]


def test_corrupt_outline_is_reported_as_missing(tmp_path):
    work_dir = tmp_path / "output" / "jobs" / "job-1"
    work_dir.mkdir(parents=True)
    (work_dir / "outline.json").write_text("{not json", encoding="utf-8")

    manager = make_manager(tmp_path, MockAI())
    assert manager.get_or_load("job-1") is None

    async def go():
        manager.start_chapter_task("job-1", 1)

    with pytest.raises(FileNotFoundError, match="job-1"):
        asyncio.run(go())


def test_finished_workers_are_released(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=1))
    job = run_job(manager, Spec(topic="西游", chapters=1))

    async def go():
        task = manager.start_chapter_task(job.id, 1)
        return await manager.wait_chapter_task(task.id)

    task = asyncio.run(go())
    assert task.status == JobStatus.COMPLETED
    assert manager._workers == {}
    # 结束后仍可查询快照
    assert manager.get(job.id).status == JobStatus.COMPLETED


def test_concurrent_jobs_write_separate_logs(tmp_path):
    manager = make_manager(tmp_path, MockAI(chapters=1))

    async def go():
        first = manager.submit(Spec(topic="西游", chapters=1))
        second = manager.submit(Spec(topic="封神", chapters=1))
        return await manager.wait(first.id), await manager.wait(second.id)

    first, second = asyncio.run(go())
    with open(first.log_path, encoding="utf-8") as f:
        first_log = f.read()
    with open(second.log_path, encoding="utf-8") as f:
        second_log = f.read()

    assert "topic=西游" in first_log and "topic=封神" not in first_log
    assert "topic=封神" in second_log and "topic=西游" not in second_log
    assert not any(name.startswith("novel.job.") for name in logging.Logger.manager.loggerDict)
