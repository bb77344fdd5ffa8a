"""
任务数据模型 - 生成任务与单章重写任务
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class JobStatus(Enum):
    """任务状态：pending → running → completed | failed"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_ORDER = {
    JobStatus.PENDING: 0,
    JobStatus.RUNNING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """状态只能向前推进；终态不再改变。"""
    if current.is_terminal:
        return False
    return _ORDER[target] > _ORDER[current]


@dataclass
class Job:
    """一次完整的生成任务"""
    id: str
    status: JobStatus = JobStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed: int = 0                  # 已完成章节数
    total: int = 0                      # 规划章节数
    work_dir: str = ""                  # 中间产物目录
    dir: str = ""                       # 成品目录
    log_path: str = ""
    error: str = ""

    def __post_init__(self):
        now = datetime.now()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed": self.completed,
            "total": self.total,
            "work_dir": self.work_dir,
            "dir": self.dir,
            "log_path": self.log_path,
            "error": self.error,
        }


@dataclass
class ChapterTask:
    """单章重写任务；读取所属任务的工作目录，但不拥有它"""
    id: str
    job_id: str
    chapter: int
    words: int = 0
    instruction: str = ""
    status: JobStatus = JobStatus.PENDING
    path: str = ""                      # 重写后的章节文件
    error: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        now = datetime.now()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "chapter": self.chapter,
            "words": self.words,
            "instruction": self.instruction,
            "status": self.status.value,
            "path": self.path,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
