"""
任务日志

每个任务一份追加写入的日志文件，每行一条：[YYYY-MM-DD HH:MM:SS] message
所有任务共用 novel.job 这一个 logger，按 job_id 把记录分发到各自的文件。
"""
import logging
import os

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_job_logger = logging.getLogger("novel.job")
_job_logger.setLevel(logging.INFO)
# 任务日志只写入自己的文件，不冒泡到根 logger
_job_logger.propagate = False


class _JobFilter(logging.Filter):
    """只放行属于指定任务的记录"""

    def __init__(self, job_id: str):
        super().__init__()
        self.job_id = job_id

    def filter(self, record: logging.LogRecord) -> bool:
        return getattr(record, "job_id", None) == self.job_id


class JobLogger:
    """绑定到单个任务日志文件的 logger"""

    def __init__(self, path: str, job_id: str):
        self.path = path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

        self._handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        self._handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        self._handler.addFilter(_JobFilter(job_id))
        _job_logger.addHandler(self._handler)
        self._adapter = logging.LoggerAdapter(_job_logger, {"job_id": job_id})

    def log(self, message: str) -> None:
        self._adapter.info(message)

    def close(self) -> None:
        _job_logger.removeHandler(self._handler)
        self._handler.close()
