"""
字数统计（中文小说口径）
"""
import re
from typing import Dict


_CJK_PATTERN = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
_EN_WORD_PATTERN = re.compile(r"[a-zA-Z]+")
_DIGIT_PATTERN = re.compile(r"[0-9０-９]")


def count_words_detail(text: str) -> Dict[str, int]:
    """
    分项统计
    - 中文字符每个算1字
    - 英文单词每个算1字
    - 数字按字符计
    - 标点符号不计入
    """
    text = text or ""
    chinese = len(_CJK_PATTERN.findall(text))
    english_words = len(_EN_WORD_PATTERN.findall(text))
    numbers = len(_DIGIT_PATTERN.findall(text))
    return {
        "total": chinese + english_words + numbers,
        "chinese": chinese,
        "english_words": english_words,
        "numbers": numbers,
    }


def count_story_words(text: str) -> int:
    """章节正文字数，用于日志与进度展示。"""
    return count_words_detail(text)["total"]
