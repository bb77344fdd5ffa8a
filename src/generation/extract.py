"""
模型输出中的 JSON 提取

模型经常在 JSON 外包裹说明文字或代码块，甚至在输出被截断时缺少结尾括号。
extract_json 只负责找出“最可能的 JSON 片段”，不做任何修补；
decode_json 在其基础上解码并校验顶层类型。
"""
import json
from typing import Any, Optional, Tuple, Type, Union

FENCE = "```"
_OPENERS = "{["
_CLOSERS = "}]"
_LANG_TAG_MAX = 16


class ParseError(ValueError):
    """提取后的文本无法解码为期望的结构。"""


class ExtractionError(RuntimeError):
    """回退阶梯全部失败，或大纲无法调整到要求的章数。"""


def _first_bracket(text: str) -> int:
    positions = [p for p in (text.find("{"), text.find("[")) if p >= 0]
    return min(positions) if positions else -1


def _unfence(text: str) -> str:
    start = text.find(FENCE)
    if start < 0:
        return text
    stripped = text.lstrip()
    if stripped and stripped[0] in _OPENERS:
        offset = len(text) - len(stripped)
        # 整段以 JSON 开头且其闭合范围覆盖代码块标记，说明标记位于 JSON 字符串内部
        if _balanced_end(text, offset) > start:
            return text
    end = text.find(FENCE, start + len(FENCE))
    if end < 0:
        return text
    content = text[start + len(FENCE):end]
    newline = content.find("\n")
    if 0 <= newline < _LANG_TAG_MAX:
        header = content[:newline]
        if not any(c in header for c in _OPENERS + _CLOSERS):
            content = content[newline + 1:]
    return content


def _balanced_end(text: str, start: int) -> int:
    """从 start 起跟踪嵌套深度，返回深度归零处之后的位置；未闭合返回 -1。"""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c in _OPENERS:
            depth += 1
        elif c in _CLOSERS:
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def extract_json(text: str) -> str:
    """
    提取文本中的 JSON 片段（幂等，不抛异常）
    :param text: 模型原始输出
    :return: 以 { 或 [ 开头的片段；找不到括号时原样返回
    """
    text = _unfence(text or "")
    start = _first_bracket(text)
    if start < 0:
        return text

    end = _balanced_end(text, start)
    if end > start:
        return text[start:end]

    # 输出被截断：退回到起点之后最后一个闭合括号
    last = max(text.rfind("}"), text.rfind("]"))
    if last > start:
        return text[start:last + 1]
    return text[start:]


def decode_json(
    text: str,
    expect: Optional[Union[Type[Any], Tuple[Type[Any], ...]]] = None,
) -> Any:
    """
    提取并解码 JSON
    :param expect: 期望的顶层类型（dict / list），不符时视为解析失败
    :raises ParseError: 无法解码或类型不符
    """
    payload = extract_json(text)
    if not payload.strip():
        raise ParseError("模型输出为空")
    try:
        value = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ParseError(f"JSON 解析失败: {exc}") from exc
    if expect is not None and not isinstance(value, expect):
        raise ParseError(f"JSON 顶层类型不符: {type(value).__name__}")
    return value
