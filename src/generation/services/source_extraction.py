"""Source extraction service: outline / character roster from arbitrary source text."""

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from schema.novel import (
    Chapter,
    Character,
    Outline,
    chapters_from_json,
    characters_from_json,
    merge_characters,
    reindex_chapters,
)

from ..chunker import DEFAULT_MAX_CHARS, chunk_text_by_paragraph
from ..extract import ExtractionError, ParseError, decode_json
from ..prompts import (
    CHARACTERS_SCHEMA,
    FRAGMENTS_SCHEMA,
    OUTLINE_SCHEMA,
    PROMPT_CHARACTER_CHUNK,
    PROMPT_CHARACTER_EXTRACT,
    PROMPT_OUTLINE_CHUNK,
    PROMPT_OUTLINE_EXTRACT,
    PROMPT_OUTLINE_NORMALIZE,
    PROMPT_STRICT_JSON,
    SYSTEM_CHARACTER_EXTRACT,
    SYSTEM_OUTLINE_CHUNK,
    SYSTEM_OUTLINE_EXTRACT,
    SYSTEM_OUTLINE_NORMALIZE,
)

logger = logging.getLogger(__name__)

ChatFn = Callable[[str, str], Awaitable[str]]


def parse_outline(text: str) -> Outline:
    outline = Outline.from_dict(decode_json(text, dict))
    reindex_chapters(outline.chapters)
    return outline


def parse_characters(text: str) -> List[Character]:
    return characters_from_json(decode_json(text, (list, dict)))


def parse_fragments(text: str) -> List[Chapter]:
    return chapters_from_json(decode_json(text, (list, dict)))


class SourceExtractionService:
    """
    从来源文本抽取大纲与人物

    每项抽取走三级回退：直接抽取 → 严格 JSON 重试 → 分片增量抽取。
    """

    def __init__(
        self,
        chat: ChatFn,
        chunk_chars: int = DEFAULT_MAX_CHARS,
        log: Optional[Callable[[str], None]] = None,
    ):
        """
        :param chat: 异步调用 (system, user) -> text，已带重试策略
        :param chunk_chars: 分片预算（字符数）
        :param log: 任务日志回调
        """
        self.chat = chat
        self.chunk_chars = chunk_chars
        self.log = log

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.log is not None:
            self.log(message)

    async def _ladder(
        self,
        label: str,
        system: str,
        user: str,
        strict_user: str,
        parse: Callable[[str], Any],
        chunked: Callable[[], Awaitable[Any]],
    ) -> Any:
        text = await self.chat(system, user)
        try:
            return parse(text)
        except ParseError as exc:
            self._log(f"[抽取{label}失败] {exc}")

        try:
            text = await self.chat(system, strict_user)
        except Exception as exc:
            strict_error: Exception = exc
            self._log(f"[严格重试失败] {label} {exc}")
        else:
            try:
                return parse(text)
            except ParseError as exc:
                strict_error = exc
                self._log(f"[严格重试解析失败] {label} {exc}")

        try:
            return await chunked()
        except ExtractionError:
            if isinstance(strict_error, ParseError):
                raise
            # 严格重试的调用错误比“分片全部失败”更能说明问题
            raise strict_error

    def _chunks(self, source: str) -> List[str]:
        return chunk_text_by_paragraph(source, self.chunk_chars)

    # ---------- 大纲 ----------

    async def extract_outline(self, source: str, topic: str = "", chapter_count: int = 0) -> Outline:
        """
        抽取大纲
        :param topic: 标题兜底
        :param chapter_count: 期望章数，大于 0 且不一致时尝试统一
        """
        user = PROMPT_OUTLINE_EXTRACT.format(schema=OUTLINE_SCHEMA, source=source)
        strict_user = PROMPT_STRICT_JSON.format(schema=OUTLINE_SCHEMA, body=f"文本：\n{source}")
        outline = await self._ladder(
            "大纲",
            SYSTEM_OUTLINE_EXTRACT,
            user,
            strict_user,
            parse_outline,
            lambda: self.extract_outline_chunked(source, topic),
        )
        if not outline.title and topic:
            outline.title = topic

        if chapter_count > 0 and len(outline.chapters) != chapter_count:
            outline = await self.normalize_outline(outline, source, chapter_count)
        return outline

    async def extract_outline_chunked(self, source: str, topic: str = "") -> Outline:
        """分片增量抽取：逐片拆章，解析失败的分片记录后跳过。"""
        title = topic
        chapters: List[Chapter] = []
        for i, chunk in enumerate(self._chunks(source)):
            if not chunk.strip():
                continue
            text = await self.chat(
                SYSTEM_OUTLINE_CHUNK,
                PROMPT_OUTLINE_CHUNK.format(schema=FRAGMENTS_SCHEMA, chunk=chunk),
            )
            try:
                fragments = parse_fragments(text)
            except ParseError as exc:
                self._log(f"[分片大纲失败] chunk={i} err={exc}")
                continue
            if not title:
                title = next((f.title for f in fragments if f.title), "")
            chapters.extend(fragments)

        if not chapters:
            raise ExtractionError("无法从大文本抽取大纲")
        return Outline(title=title, chapters=reindex_chapters(chapters))

    async def normalize_outline(self, outline: Outline, source: str, chapter_count: int) -> Outline:
        """
        请求模型把草稿大纲统一为恰好 chapter_count 章
        调用失败或章数仍不符时保留草稿。
        """
        user = PROMPT_OUTLINE_NORMALIZE.format(
            chapter_count=chapter_count,
            schema=OUTLINE_SCHEMA,
            source=source,
            outline_json=json.dumps(outline.to_dict(), ensure_ascii=False),
        )
        try:
            text = await self.chat(SYSTEM_OUTLINE_NORMALIZE, user)
            normalized = parse_outline(text)
        except Exception as exc:
            self._log(f"[大纲统一失败] {exc}")
            return outline

        if len(normalized.chapters) != chapter_count:
            self._log(f"[大纲统一不符] 期望 {chapter_count} 章，得到 {len(normalized.chapters)} 章，保留草稿")
            return outline
        if not normalized.title:
            normalized.title = outline.title
        return normalized

    # ---------- 人物 ----------

    async def extract_characters(self, source: str, title: str) -> List[Character]:
        user = PROMPT_CHARACTER_EXTRACT.format(schema=CHARACTERS_SCHEMA, title=title, source=source)
        strict_user = PROMPT_STRICT_JSON.format(
            schema=CHARACTERS_SCHEMA,
            body=f"标题：{title}\n文本：\n{source}",
        )
        return await self._ladder(
            "人物",
            SYSTEM_CHARACTER_EXTRACT,
            user,
            strict_user,
            parse_characters,
            lambda: self.extract_characters_chunked(source, title),
        )

    async def extract_characters_chunked(self, source: str, title: str) -> List[Character]:
        """分片抽取人物，按名字去重合并，保持首次出现顺序。"""
        merged: Dict[str, Character] = {}
        for i, chunk in enumerate(self._chunks(source)):
            if not chunk.strip():
                continue
            text = await self.chat(
                SYSTEM_CHARACTER_EXTRACT,
                PROMPT_CHARACTER_CHUNK.format(schema=CHARACTERS_SCHEMA, title=title, chunk=chunk),
            )
            try:
                characters = parse_characters(text)
            except ParseError as exc:
                self._log(f"[分片人物失败] chunk={i} err={exc}")
                continue
            for character in characters:
                existing = merged.get(character.name)
                merged[character.name] = merge_characters(existing, character) if existing else character

        if not merged:
            raise ExtractionError("无法从大文本抽取人物")
        return list(merged.values())
