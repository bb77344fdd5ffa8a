"""
按段落切分大文本

以空行为段落边界贪心累积，单个段落超出预算时才按固定宽度硬切。
"""
from typing import List

PARAGRAPH_SEPARATOR = "\n\n"
DEFAULT_MAX_CHARS = 8000


def _hard_split(paragraph: str, max_chars: int) -> List[str]:
    return [paragraph[i:i + max_chars] for i in range(0, len(paragraph), max_chars)]


def chunk_text_by_paragraph(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> List[str]:
    """
    切分文本
    :param text: 原文
    :param max_chars: 每片最大字符数，非正值使用默认值
    :return: 有序、互不重叠的片段；用段落分隔符拼回即为原文
             （被硬切的超长段落，其各片直接首尾相接）
    """
    if not text:
        return []
    if max_chars <= 0:
        max_chars = DEFAULT_MAX_CHARS

    chunks: List[str] = []
    current: List[str] = []
    current_len = 0

    def flush():
        nonlocal current, current_len
        if current:
            chunks.append(PARAGRAPH_SEPARATOR.join(current))
            current = []
            current_len = 0

    for paragraph in text.split(PARAGRAPH_SEPARATOR):
        if len(paragraph) > max_chars:
            flush()
            chunks.extend(_hard_split(paragraph, max_chars))
            continue
        added = len(paragraph) + (len(PARAGRAPH_SEPARATOR) if current else 0)
        if current and current_len + added > max_chars:
            flush()
            added = len(paragraph)
        current.append(paragraph)
        current_len += added
    flush()
    return chunks
