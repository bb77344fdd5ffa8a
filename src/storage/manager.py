"""
存储管理器

负责任务工作目录中的中间产物（大纲、人物、规划、章节、进度）
以及最终成品目录的读写。
"""
import json
import os
from typing import Any, Dict, List, Optional

from schema.novel import (
    Chapter,
    ChapterContent,
    Character,
    Outline,
    Settings,
    Spec,
    chapters_from_json,
    characters_from_json,
)

UNTITLED = "未命名"


def sanitize_file_name(name: str) -> str:
    """去除首尾空白，空格换成下划线，路径分隔符换成连字符。"""
    name = (name or "").strip()
    return name.replace(" ", "_").replace("/", "-").replace("\\", "-")


def chapter_file_name(index: int, title: str) -> str:
    """章节文件名：两位序号_标题.md"""
    return f"{index:02d}_{sanitize_file_name(title)}.md"


def render_chapter(title: str, content: str) -> str:
    return f"# {title}\n\n{content}"


class JobStorage:
    """单个任务的工作目录"""

    OUTLINE_FILE = "outline.json"
    CHARACTERS_FILE = "characters.json"
    PLANS_FILE = "plans.json"
    SETTINGS_FILE = "settings.json"
    SPEC_FILE = "spec.json"
    PROGRESS_FILE = "progress.json"
    CHAPTERS_DIR = "chapters"

    def __init__(self, work_dir: str):
        self.work_dir = work_dir

    @property
    def chapters_dir(self) -> str:
        return os.path.join(self.work_dir, self.CHAPTERS_DIR)

    def ensure(self) -> str:
        os.makedirs(self.work_dir, exist_ok=True)
        return self.work_dir

    def _write_json(self, filename: str, data: Any) -> str:
        self.ensure()
        filepath = os.path.join(self.work_dir, filename)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        return filepath

    def _read_json(self, filename: str) -> Any:
        filepath = os.path.join(self.work_dir, filename)
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def has(self, filename: str) -> bool:
        return os.path.exists(os.path.join(self.work_dir, filename))

    # ---------- 保存 ----------

    def save_outline(self, outline: Outline) -> str:
        return self._write_json(self.OUTLINE_FILE, outline.to_dict())

    def save_characters(self, characters: List[Character]) -> str:
        return self._write_json(self.CHARACTERS_FILE, [c.to_dict() for c in characters])

    def save_plans(self, plans: List[Chapter]) -> str:
        return self._write_json(self.PLANS_FILE, [p.to_dict() for p in plans])

    def save_settings(self, settings: Settings) -> str:
        return self._write_json(self.SETTINGS_FILE, settings.to_dict())

    def save_spec(self, spec: Spec) -> str:
        return self._write_json(self.SPEC_FILE, spec.to_dict())

    def save_progress(self, completed: int, total: int) -> str:
        return self._write_json(self.PROGRESS_FILE, {"completed": completed, "total": total})

    def save_chapter(self, content: ChapterContent) -> str:
        """
        保存章节为 Markdown（H1 标题 + 正文），同序号旧文件会被替换
        :return: 文件路径
        """
        os.makedirs(self.chapters_dir, exist_ok=True)
        filename = chapter_file_name(content.index, content.title)
        prefix = f"{content.index:02d}_"
        for existing in self.list_chapter_files():
            if existing.startswith(prefix) and existing != filename:
                os.remove(os.path.join(self.chapters_dir, existing))
        filepath = os.path.join(self.chapters_dir, filename)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(render_chapter(content.title, content.content))
        return filepath

    # ---------- 读取 ----------

    def load_outline(self) -> Outline:
        return Outline.from_dict(self._read_json(self.OUTLINE_FILE))

    def load_characters(self) -> List[Character]:
        return characters_from_json(self._read_json(self.CHARACTERS_FILE))

    def load_plans(self) -> List[Chapter]:
        return chapters_from_json(self._read_json(self.PLANS_FILE))

    def load_settings(self) -> Settings:
        """设定缺失或损坏时返回空设定。"""
        if not self.has(self.SETTINGS_FILE):
            return Settings()
        try:
            return Settings.from_dict(self._read_json(self.SETTINGS_FILE))
        except (OSError, ValueError):
            return Settings()

    def load_spec(self) -> Optional[Spec]:
        if not self.has(self.SPEC_FILE):
            return None
        try:
            return Spec.from_dict(self._read_json(self.SPEC_FILE))
        except (OSError, ValueError):
            return None

    def load_progress(self) -> Optional[Dict[str, int]]:
        if not self.has(self.PROGRESS_FILE):
            return None
        return self._read_json(self.PROGRESS_FILE)

    def list_chapter_files(self) -> List[str]:
        """列出已渲染的章节文件（按文件名排序）"""
        if not os.path.isdir(self.chapters_dir):
            return []
        return sorted(
            f for f in os.listdir(self.chapters_dir)
            if f.endswith(".md") and os.path.isfile(os.path.join(self.chapters_dir, f))
        )

    def count_chapters(self) -> int:
        return len(self.list_chapter_files())

    def read_chapter(self, index: int) -> Optional[str]:
        """读取指定序号的已渲染章节全文，不存在返回 None"""
        prefix = f"{index:02d}_"
        for filename in self.list_chapter_files():
            if filename.startswith(prefix):
                with open(os.path.join(self.chapters_dir, filename), "r", encoding="utf-8") as f:
                    return f.read()
        return None


class StorageManager:
    """存储管理器 - 管理输出根目录下的任务目录与成品目录"""

    JOBS_DIR = "jobs"

    def __init__(self, base_dir: str = "./output"):
        """
        初始化存储管理器
        :param base_dir: 输出根目录
        """
        self.base_dir = base_dir

    def get_job_dir(self, job_id: str) -> str:
        """任务工作目录（不自动创建）"""
        return os.path.join(self.base_dir, self.JOBS_DIR, job_id)

    def job_storage(self, job_id: str) -> JobStorage:
        return JobStorage(self.get_job_dir(job_id))

    def get_output_dir(self, title: str) -> str:
        name = sanitize_file_name(title) or UNTITLED
        # 与任务工作区根目录同名时加后缀
        if name == self.JOBS_DIR:
            name += "_"
        return os.path.join(self.base_dir, name)

    def write_final_output(self, outline: Outline, contents: List[ChapterContent]) -> str:
        """
        写出最终成品目录（以清洗后的大纲标题命名），失败直接抛出
        :return: 成品目录路径
        """
        output_dir = self.get_output_dir(outline.title)
        os.makedirs(output_dir, exist_ok=True)
        for content in contents:
            filepath = os.path.join(output_dir, chapter_file_name(content.index, content.title))
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(render_chapter(content.title, content.content))
        return output_dir
