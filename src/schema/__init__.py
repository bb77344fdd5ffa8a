"""Schema 模块 - 数据模型定义"""
from .novel import (
    Canon,
    Chapter,
    ChapterContent,
    Character,
    CoherenceIssue,
    NovelResult,
    Outline,
    Settings,
    Spec,
    apply_spec_defaults,
    merge_characters,
    reindex_chapters,
)

__all__ = [
    "Canon",
    "Chapter",
    "ChapterContent",
    "Character",
    "CoherenceIssue",
    "NovelResult",
    "Outline",
    "Settings",
    "Spec",
    "apply_spec_defaults",
    "merge_characters",
    "reindex_chapters",
]
