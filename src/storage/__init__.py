"""Storage 模块 - 本地持久化"""
from .manager import JobStorage, StorageManager, chapter_file_name, sanitize_file_name

__all__ = ["JobStorage", "StorageManager", "chapter_file_name", "sanitize_file_name"]
