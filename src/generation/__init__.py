"""
Generation 模块 - 生成层

包含 JSON 提取、文本切分、设定预设与 Prompt 模板；
管线服务见 generation.services。
"""
from .chunker import chunk_text_by_paragraph
from .extract import ExtractionError, ParseError, decode_json, extract_json
from .presets import build_setting_prompt, build_system_from_categories, get_categories

__all__ = [
    "chunk_text_by_paragraph",
    "ExtractionError", "ParseError", "decode_json", "extract_json",
    "build_setting_prompt", "build_system_from_categories", "get_categories",
]
