"""
任务管理器

维护生成任务与单章重写任务的内存登记表；每个任务一个 asyncio 工作协程。
登记表由一把锁保护，锁只在读写条目时短暂持有，不跨越任何 await。
"""
import asyncio
import logging
import os
import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from config import Config
from generation.canon import build_canon
from generation.services import NovelPipelineService
from models import ChatClient, get_client
from schema.novel import Chapter, ChapterContent, NovelResult, Outline, Spec, apply_spec_defaults
from storage import JobStorage, StorageManager

from .logger import JobLogger
from .models import ChapterTask, Job, JobStatus, can_transition

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Config], ChatClient]
Runner = Callable[
    [NovelPipelineService, Spec, Callable[[List[Chapter]], None], Callable[[ChapterContent], None]],
    Awaitable[NovelResult],
]


class JobManager:
    """生成任务管理器"""

    def __init__(
        self,
        config: Config,
        client_factory: ClientFactory = get_client,
        storage: Optional[StorageManager] = None,
    ):
        """
        :param config: 运行配置
        :param client_factory: 按配置创建模型客户端（测试时注入桩）
        :param storage: 输出根目录管理器，默认使用 config.output_dir
        """
        self.config = config
        self.client_factory = client_factory
        self.storage = storage or StorageManager(config.output_dir)
        self._lock = threading.Lock()
        self._jobs: Dict[str, Job] = {}
        self._tasks: Dict[str, ChapterTask] = {}
        self._workers: Dict[str, "asyncio.Task[None]"] = {}

    # ==================== 登记表 ====================

    @staticmethod
    def _new_id(prefix: str, registry: Dict[str, object]) -> str:
        new_id = f"{prefix}-{time.time_ns()}"
        while new_id in registry:
            new_id = f"{prefix}-{time.time_ns()}"
        return new_id

    def _transition(self, registry: Dict, key: str, status: JobStatus, **fields) -> bool:
        """单调状态迁移；终态不会被覆盖。"""
        with self._lock:
            entry = registry[key]
            if not can_transition(entry.status, status):
                logger.warning("忽略状态迁移 %s: %s -> %s", key, entry.status.value, status.value)
                return False
            entry.status = status
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.updated_at = datetime.now()
            return True

    def _update(self, registry: Dict, key: str, **fields) -> None:
        with self._lock:
            entry = registry[key]
            if entry.is_terminal:
                return
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.updated_at = datetime.now()

    def get(self, job_id: str) -> Optional[Job]:
        """返回任务快照（副本），不存在返回 None"""
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def get_chapter_task(self, task_id: str) -> Optional[ChapterTask]:
        with self._lock:
            task = self._tasks.get(task_id)
            return replace(task) if task else None

    def _track(self, key: str, worker: "asyncio.Task[None]") -> None:
        self._workers[key] = worker
        # 结束后移出，登记表只保留任务快照
        worker.add_done_callback(lambda _: self._workers.pop(key, None))

    async def _join(self, key: str) -> None:
        worker = self._workers.get(key)
        if worker is not None:
            await worker

    async def wait(self, job_id: str) -> Optional[Job]:
        """等待任务的工作协程结束，返回最终快照。"""
        await self._join(job_id)
        return self.get(job_id)

    async def wait_chapter_task(self, task_id: str) -> Optional[ChapterTask]:
        await self._join(task_id)
        return self.get_chapter_task(task_id)

    # ==================== 提交 ====================

    def submit(self, spec: Spec) -> Job:
        """主题驱动任务；必须在运行中的事件循环内调用"""
        async def runner(pipeline, merged, on_plans, on_chapter):
            return await pipeline.generate(merged, on_plans=on_plans, on_chapter=on_chapter)

        return self._start(spec, runner, "[任务开始] 生成小说任务启动")

    def submit_from_source(self, spec: Spec, text: str) -> Job:
        """来源文本驱动任务"""
        async def runner(pipeline, merged, on_plans, on_chapter):
            return await pipeline.generate_from_source(merged, text, on_plans=on_plans, on_chapter=on_chapter)

        return self._start(spec, runner, "[任务开始] 使用来源文本生成小说")

    def submit_from_outline(self, spec: Spec, outline: Outline) -> Job:
        """大纲驱动任务"""
        async def runner(pipeline, merged, on_plans, on_chapter):
            return await pipeline.generate_from_outline(merged, outline, on_plans=on_plans, on_chapter=on_chapter)

        return self._start(spec, runner, "[任务开始] 使用给定大纲生成小说")

    def _start(self, spec: Spec, runner: Runner, start_message: str) -> Job:
        loop = asyncio.get_running_loop()
        with self._lock:
            job_id = self._new_id("job", self._jobs)
            job = Job(id=job_id, total=max(0, spec.chapters))
            self._jobs[job_id] = job
            snapshot = replace(job)
        self._track(job_id, loop.create_task(self._run_job(job_id, spec, runner, start_message)))
        return snapshot

    # ==================== 工作协程 ====================

    @staticmethod
    def _write_progress(storage: JobStorage, completed: int, total: int, log: Callable[[str], None]) -> None:
        try:
            storage.save_progress(completed, total)
        except OSError as exc:
            log(f"[保存失败] progress.json: {exc}")

    async def _run_job(self, job_id: str, spec: Spec, runner: Runner, start_message: str) -> None:
        self._transition(self._jobs, job_id, JobStatus.RUNNING)
        storage = self.storage.job_storage(job_id)
        job_log: Optional[JobLogger] = None
        log: Callable[[str], None] = logger.info
        try:
            storage.ensure()
            log_path = os.path.join(storage.work_dir, f"{job_id}.log")
            job_log = JobLogger(log_path, job_id)
            log = job_log.log
            self._update(self._jobs, job_id, work_dir=storage.work_dir, log_path=log_path)
            log(start_message)

            merged = apply_spec_defaults(spec, self.config)
            log(
                f"[参数] topic={merged.topic} chapters={merged.chapters} words={merged.words} "
                f"model={merged.model} preset={merged.preset}"
            )
            self._update(self._jobs, job_id, total=merged.chapters)
            progress = {"completed": 0, "total": merged.chapters}

            def on_plans(plans: List[Chapter]) -> None:
                progress["total"] = len(plans)
                self._update(self._jobs, job_id, total=progress["total"])
                self._write_progress(storage, progress["completed"], progress["total"], log)

            def on_chapter(content: ChapterContent) -> None:
                progress["completed"] += 1
                self._update(self._jobs, job_id, completed=progress["completed"])
                self._write_progress(storage, progress["completed"], progress["total"], log)

            pipeline = NovelPipelineService(self.client_factory(self.config), self.config, storage=storage, log=log)
            result = await asyncio.wait_for(
                runner(pipeline, merged, on_plans, on_chapter),
                timeout=self.config.job_timeout,
            )

            output_dir = self.storage.write_final_output(result.outline, result.contents)
            log(f"[任务完成] 共 {len(result.contents)} 章，输出目录：{output_dir}")
            self._transition(self._jobs, job_id, JobStatus.COMPLETED, dir=output_dir)
        except asyncio.TimeoutError:
            message = f"任务超时（超过 {self.config.job_timeout / 60:g} 分钟）"
            log(f"[任务失败] {message}")
            self._transition(self._jobs, job_id, JobStatus.FAILED, error=message)
        except asyncio.CancelledError:
            log("[任务失败] 任务被取消")
            self._transition(self._jobs, job_id, JobStatus.FAILED, error="任务被取消")
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            log(f"[任务失败] {message}")
            self._transition(self._jobs, job_id, JobStatus.FAILED, error=message)
        finally:
            if job_log is not None:
                job_log.close()

    # ==================== 从磁盘恢复 ====================

    def load_job_from_disk(self, job_id: str) -> Job:
        """
        仅凭工作目录重建任务状态（无法从中断处继续）
        - total：plans.json 的章节数
        - completed：chapters/ 下已渲染的章节文件数
        :raises FileNotFoundError: 工作目录不存在，或大纲缺失、损坏
        """
        with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None:
                return replace(existing)

        storage = self.storage.job_storage(job_id)
        if not os.path.isdir(storage.work_dir):
            raise FileNotFoundError(f"任务不存在：{job_id}")
        try:
            outline = storage.load_outline()
        except (OSError, ValueError) as exc:
            raise FileNotFoundError(f"任务大纲无法读取：{job_id}（{exc}）") from exc
        try:
            total = len(storage.load_plans())
        except (OSError, ValueError):
            total = 0
        completed = storage.count_chapters()

        if total > 0 and completed >= total:
            status, error = JobStatus.COMPLETED, ""
        else:
            status = JobStatus.FAILED
            error = f"任务未完成（{completed}/{total} 章），无法从中断处继续，可通过单章重写补齐"

        log_path = os.path.join(storage.work_dir, f"{job_id}.log")
        job = Job(
            id=job_id,
            status=status,
            completed=completed,
            total=total,
            work_dir=storage.work_dir,
            dir=self.storage.get_output_dir(outline.title),
            log_path=log_path if os.path.exists(log_path) else "",
            error=error,
        )
        with self._lock:
            job = self._jobs.setdefault(job_id, job)
            return replace(job)

    def get_or_load(self, job_id: str) -> Optional[Job]:
        """先查内存，再尝试从磁盘重建；都没有返回 None"""
        job = self.get(job_id)
        if job is not None:
            return job
        try:
            return self.load_job_from_disk(job_id)
        except FileNotFoundError:
            return None

    # ==================== 单章重写 ====================

    def start_chapter_task(self, job_id: str, chapter: int, words: int = 0, instruction: str = "") -> ChapterTask:
        """
        启动单章重写任务；必须在运行中的事件循环内调用
        :raises FileNotFoundError: 所属任务不存在
        """
        job = self.get_or_load(job_id)
        if job is None:
            raise FileNotFoundError(f"任务不存在：{job_id}")
        work_dir = job.work_dir or self.storage.get_job_dir(job_id)

        loop = asyncio.get_running_loop()
        with self._lock:
            task_id = self._new_id("chap", self._tasks)
            task = ChapterTask(id=task_id, job_id=job_id, chapter=chapter, words=words, instruction=instruction)
            self._tasks[task_id] = task
            snapshot = replace(task)
        self._track(task_id, loop.create_task(self._run_chapter_task(task_id, work_dir)))
        return snapshot

    @staticmethod
    def _collect_prior(storage: JobStorage, chapter: int) -> List[Tuple[int, str]]:
        prior: List[Tuple[int, str]] = []
        for index in range(1, chapter):
            text = storage.read_chapter(index)
            if text is not None:
                prior.append((index, text))
        return prior

    async def _run_chapter_task(self, task_id: str, work_dir: str) -> None:
        self._transition(self._tasks, task_id, JobStatus.RUNNING)
        task = self.get_chapter_task(task_id)
        storage = JobStorage(work_dir)
        try:
            outline = storage.load_outline()
            characters = storage.load_characters()
            plans = storage.load_plans()
            plan = next((p for p in plans if p.index == task.chapter), None)
            if plan is None:
                raise LookupError("chapter plan not found")

            base = storage.load_spec() or Spec(topic=outline.title)
            spec = apply_spec_defaults(
                replace(
                    base,
                    words=task.words if task.words > 0 else base.words,
                    instruction=task.instruction or base.instruction,
                ),
                self.config,
            )
            canon = build_canon(spec, outline, characters, storage.load_settings())
            prior = self._collect_prior(storage, task.chapter)

            pipeline = NovelPipelineService(self.client_factory(self.config), self.config)
            content = await asyncio.wait_for(
                pipeline.generate_chapter_with_history(spec, canon, plan, prior),
                timeout=self.config.job_timeout,
            )
            path = storage.save_chapter(content)
            self._write_progress(storage, storage.count_chapters(), len(plans), logger.warning)
            self._transition(self._tasks, task_id, JobStatus.COMPLETED, path=path)
        except asyncio.TimeoutError:
            message = f"单章任务超时（超过 {self.config.job_timeout / 60:g} 分钟）"
            self._transition(self._tasks, task_id, JobStatus.FAILED, error=message)
        except asyncio.CancelledError:
            self._transition(self._tasks, task_id, JobStatus.FAILED, error="任务被取消")
            raise
        except Exception as exc:
            logger.warning("单章任务 %s 失败: %s", task_id, exc)
            self._transition(self._tasks, task_id, JobStatus.FAILED, error=str(exc) or type(exc).__name__)
