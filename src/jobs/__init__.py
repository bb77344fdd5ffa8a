"""Jobs 模块 - 异步生成任务管理"""
from .logger import JobLogger
from .manager import JobManager
from .models import ChapterTask, Job, JobStatus

__all__ = ["ChapterTask", "Job", "JobLogger", "JobManager", "JobStatus"]
