"""Novel pipeline service: outline -> characters -> plans -> settings -> chapters -> audit -> fixes."""

import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import Config
from models import ChatClient
from schema.novel import (
    Canon,
    Chapter,
    ChapterContent,
    Character,
    CoherenceIssue,
    NovelResult,
    Outline,
    Settings,
    Spec,
    chapters_from_json,
    issues_from_json,
    reindex_chapters,
)
from storage import JobStorage
from utils import count_story_words

from ..canon import build_canon, build_chapter_prompt, select_relevant_characters
from ..extract import ExtractionError, ParseError, decode_json
from ..presets import build_setting_prompt
from ..prompts import (
    CHAPTERS_SCHEMA,
    CHARACTERS_SCHEMA,
    OUTLINE_SCHEMA,
    PROMPT_AUDIT,
    PROMPT_CHAPTER_PLANS,
    PROMPT_CHARACTERS,
    PROMPT_CONTINUE_FROM_HISTORY,
    PROMPT_HISTORY_REQUEST,
    PROMPT_OUTLINE,
    PROMPT_REVISE,
    PROMPT_STRICT_JSON,
    SYSTEM_AUDIT,
    SYSTEM_CHARACTERS,
    SYSTEM_OUTLINE,
    SYSTEM_PLANS,
    SYSTEM_REVISE,
)
from .source_extraction import SourceExtractionService, parse_characters, parse_outline

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER_COUNT = 10

OnPlans = Callable[[List[Chapter]], None]
OnChapter = Callable[[ChapterContent], None]


def _parse_plans(text: str) -> List[Chapter]:
    return chapters_from_json(decode_json(text, (list, dict)))


class NovelPipelineService:
    """封装完整的小说生成流程（主题驱动 / 大纲驱动 / 来源文本驱动）。"""

    def __init__(
        self,
        ai: ChatClient,
        config: Config,
        storage: Optional[JobStorage] = None,
        log: Optional[Callable[[str], None]] = None,
    ):
        """
        :param ai: 对话模型客户端
        :param config: 运行配置（重试、超时、分片预算）
        :param storage: 任务工作目录；为空时不落盘
        :param log: 任务日志回调
        """
        self.ai = ai
        self.config = config
        self.storage = storage
        self.log = log

    def _log(self, message: str) -> None:
        logger.info(message)
        if self.log is not None:
            self.log(message)

    def _persist(self, what: str, method: str, *args: Any) -> None:
        """中间产物落盘失败只记录，不中断管线。"""
        if self.storage is None:
            return
        try:
            getattr(self.storage, method)(*args)
        except OSError as exc:
            self._log(f"[保存失败] {what}: {exc}")

    async def _chat(
        self,
        model: str,
        system: str,
        user: str,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> str:
        return await self.ai.chat_with_retry(
            model,
            system,
            user,
            max_attempts=self.config.max_retries,
            backoff=self.config.retry_backoff,
            history=history,
            request_timeout=self.config.request_timeout_sec,
        )

    async def _request_json(
        self,
        label: str,
        model: str,
        system: str,
        user: str,
        schema: str,
        parse: Callable[[str], Any],
    ) -> Any:
        """请求并解析 JSON；解析失败时以严格格式重试一次。"""
        text = await self._chat(model, system, user)
        try:
            return parse(text)
        except ParseError as exc:
            self._log(f"[{label}解析失败] {exc}，严格重试")
        text = await self._chat(model, system, PROMPT_STRICT_JSON.format(schema=schema, body=user))
        return parse(text)

    def source_service(self, spec: Spec) -> SourceExtractionService:
        return SourceExtractionService(
            partial(self._chat, spec.model),
            chunk_chars=self.config.chunk_chars,
            log=self._log,
        )

    # ==================== 各阶段 ====================

    async def generate_outline(self, spec: Spec) -> Outline:
        """
        生成大纲，保证恰好 spec.chapters 章（1..N）
        章数不符时先请求统一，仍过多则截断，仍不足则失败。
        """
        count = spec.chapters if spec.chapters > 0 else DEFAULT_CHAPTER_COUNT
        user = PROMPT_OUTLINE.format(chapter_count=count, schema=OUTLINE_SCHEMA, topic=spec.topic)
        outline: Outline = await self._request_json("大纲", spec.model, SYSTEM_OUTLINE, user, OUTLINE_SCHEMA, parse_outline)

        if len(outline.chapters) != count:
            self._log(f"[大纲章数不符] 期望 {count} 章，得到 {len(outline.chapters)} 章")
            outline = await self.source_service(spec).normalize_outline(outline, spec.topic, count)
        if len(outline.chapters) > count:
            outline.chapters = outline.chapters[:count]
        if len(outline.chapters) < count:
            raise ExtractionError(f"大纲章数不足：期望 {count} 章，实际 {len(outline.chapters)} 章")
        if not outline.title:
            outline.title = spec.topic

        self._log(f"[大纲] 标题={outline.title} 章节数={len(outline.chapters)}")
        self._persist("outline.json", "save_outline", outline)
        return outline

    async def generate_characters(self, spec: Spec, outline: Outline) -> List[Character]:
        user = PROMPT_CHARACTERS.format(schema=CHARACTERS_SCHEMA, topic=spec.topic, title=outline.title)
        characters: List[Character] = await self._request_json(
            "人物", spec.model, SYSTEM_CHARACTERS, user, CHARACTERS_SCHEMA, parse_characters
        )
        self._after_characters(characters)
        return characters

    def _after_characters(self, characters: List[Character]) -> None:
        for c in characters:
            self._log(f"[人物生成] {c.name} | {c.role} | {'、'.join(c.traits)} | {c.background}")
        self._persist("characters.json", "save_characters", characters)

    async def generate_chapter_plans(self, spec: Spec, outline: Outline) -> List[Chapter]:
        """把大纲逐章扩写为含 3-5 个关键事件的章节规划。"""
        chapter_lines = "\n".join(f"章节：{c.index}. {c.title} - {c.summary}" for c in outline.chapters)
        user = PROMPT_CHAPTER_PLANS.format(schema=CHAPTERS_SCHEMA, title=outline.title, chapter_lines=chapter_lines)
        plans: List[Chapter] = await self._request_json(
            "章节规划", spec.model, SYSTEM_PLANS, user, CHAPTERS_SCHEMA, _parse_plans
        )
        self._log(f"[章节规划] 共 {len(plans)} 章")
        self._persist("plans.json", "save_plans", plans)
        return plans

    async def generate_settings(self, spec: Spec) -> Settings:
        """世界观设定（尽力而为）：任何失败都返回空设定。"""
        system, user = build_setting_prompt(spec.preset, spec.topic, spec.gender, spec.categories, spec.tags)
        try:
            text = await self._chat(spec.model, system, user)
            settings = Settings.from_dict(decode_json(text, dict))
        except Exception as exc:
            self._log(f"[设定生成失败] {exc}")
            settings = Settings()
        self._persist("settings.json", "save_settings", settings)
        return settings

    async def generate_chapter_contents(
        self,
        spec: Spec,
        canon: Canon,
        plans: Sequence[Chapter],
        on_chapter: Optional[OnChapter] = None,
    ) -> List[ChapterContent]:
        """按规划顺序逐章生成；每章完成后先落盘，再触发回调。"""
        contents: List[ChapterContent] = []
        for plan in plans:
            relevant = select_relevant_characters(plan, canon.characters)
            self._log(f"[章节参与] 第{plan.index}章 {plan.title} | 人物：{', '.join(c.name for c in relevant)}")
            system, user = build_chapter_prompt(canon, plan, relevant, spec.words, spec.instruction, spec.system)
            text = await self._chat(spec.model, system, user)
            content = ChapterContent(index=plan.index, title=plan.title, content=text)
            self._persist(f"第{plan.index}章", "save_chapter", content)
            self._log(f"[章节完成] 第{plan.index}章 {plan.title}（{count_story_words(text)}字）")
            contents.append(content)
            if on_chapter is not None:
                on_chapter(content)
        return contents

    async def coherence_audit(self, spec: Spec, canon: Canon, contents: Sequence[ChapterContent]) -> List[CoherenceIssue]:
        """一致性审查；审查本身失败时视为没有问题。"""
        chapters = "\n".join(f"\n章节\n{c.index} {c.title}\n{c.content}" for c in contents)
        user = PROMPT_AUDIT.format(
            style=canon.style,
            character_sheets="\n".join(c.sheet() for c in canon.characters),
            chapters=chapters,
        )
        try:
            text = await self._chat(spec.model, SYSTEM_AUDIT, user)
            issues = issues_from_json(decode_json(text, (list, dict)))
        except Exception as exc:
            self._log(f"[一致性审查失败] {exc}")
            return []
        self._log(f"[一致性审查] 发现 {len(issues)} 个问题")
        return issues

    async def apply_coherence_fixes(
        self,
        spec: Spec,
        canon: Canon,
        contents: List[ChapterContent],
        issues: Sequence[CoherenceIssue],
    ) -> List[ChapterContent]:
        """
        按问题修订全部章节（整体生效）
        任一章修订失败或为空，则全部丢弃，返回原内容。
        """
        by_chapter: Dict[int, List[CoherenceIssue]] = {}
        for issue in issues:
            by_chapter.setdefault(issue.chapter, []).append(issue)

        revised: List[ChapterContent] = []
        for content in contents:
            user = PROMPT_REVISE.format(style=canon.style, title=content.title, content=content.content)
            attached = by_chapter.get(content.index)
            if attached:
                lines = [f"{i.type}:{i.detail}" + (f"|{i.fix_hint}" if i.fix_hint else "") for i in attached]
                user += "\n问题：\n" + "\n".join(lines)
            try:
                text = await self._chat(spec.model, SYSTEM_REVISE, user)
            except Exception as exc:
                self._log(f"[修订失败] 第{content.index}章 {exc}")
                break
            if not text.strip():
                self._log(f"[修订为空] 第{content.index}章")
                continue
            revised.append(ChapterContent(index=content.index, title=content.title, content=text))

        if len(revised) != len(contents):
            self._log(f"[修订丢弃] 修订 {len(revised)} 章，原有 {len(contents)} 章，保留原文")
            return contents
        for content in revised:
            self._persist(f"第{content.index}章", "save_chapter", content)
        self._log(f"[修订完成] 共 {len(revised)} 章")
        return revised

    # ==================== 入口 ====================

    async def _write_and_review(
        self,
        spec: Spec,
        canon: Canon,
        plans: List[Chapter],
        on_chapter: Optional[OnChapter],
    ) -> Tuple[List[ChapterContent], List[CoherenceIssue]]:
        contents = await self.generate_chapter_contents(spec, canon, plans, on_chapter=on_chapter)
        issues = await self.coherence_audit(spec, canon, contents)
        if issues:
            contents = await self.apply_coherence_fixes(spec, canon, contents, issues)
        return contents, issues

    async def _run_from_outline(
        self,
        spec: Spec,
        outline: Outline,
        on_plans: Optional[OnPlans],
        on_chapter: Optional[OnChapter],
    ) -> NovelResult:
        characters = await self.generate_characters(spec, outline)
        plans = await self.generate_chapter_plans(spec, outline)
        if on_plans is not None:
            on_plans(plans)
        settings = await self.generate_settings(spec)
        canon = build_canon(spec, outline, characters, settings)
        contents, issues = await self._write_and_review(spec, canon, plans, on_chapter)
        return NovelResult(outline, characters, plans, settings, contents, issues)

    async def generate(
        self,
        spec: Spec,
        on_plans: Optional[OnPlans] = None,
        on_chapter: Optional[OnChapter] = None,
    ) -> NovelResult:
        """主题驱动：从主题生成完整小说。"""
        self._persist("spec.json", "save_spec", spec)
        outline = await self.generate_outline(spec)
        return await self._run_from_outline(spec, outline, on_plans, on_chapter)

    async def generate_from_outline(
        self,
        spec: Spec,
        outline: Outline,
        on_plans: Optional[OnPlans] = None,
        on_chapter: Optional[OnChapter] = None,
    ) -> NovelResult:
        """大纲驱动：使用调用方给定的大纲，跳过大纲生成。"""
        if not outline.chapters:
            raise ParseError("大纲缺少章节")
        reindex_chapters(outline.chapters)
        self._persist("spec.json", "save_spec", spec)
        self._log(f"[大纲] 标题={outline.title} 章节数={len(outline.chapters)}")
        self._persist("outline.json", "save_outline", outline)
        return await self._run_from_outline(spec, outline, on_plans, on_chapter)

    async def generate_from_source(
        self,
        spec: Spec,
        source: str,
        on_plans: Optional[OnPlans] = None,
        on_chapter: Optional[OnChapter] = None,
    ) -> NovelResult:
        """来源文本驱动：从已有文本抽取大纲与人物后续写。"""
        self._persist("spec.json", "save_spec", spec)
        extractor = self.source_service(spec)
        outline = await extractor.extract_outline(source, topic=spec.topic, chapter_count=spec.chapters)
        self._log(f"[大纲] 标题={outline.title} 章节数={len(outline.chapters)}")
        self._persist("outline.json", "save_outline", outline)

        characters = await extractor.extract_characters(source, outline.title)
        self._after_characters(characters)

        settings = await self.generate_settings(spec)
        canon = build_canon(spec, outline, characters, settings)
        plans = await self.generate_chapter_plans(spec, outline)
        if on_plans is not None:
            on_plans(plans)
        contents, issues = await self._write_and_review(spec, canon, plans, on_chapter)
        return NovelResult(outline, characters, plans, settings, contents, issues)

    async def generate_chapter_with_history(
        self,
        spec: Spec,
        canon: Canon,
        plan: Chapter,
        prior: Sequence[Tuple[int, str]] = (),
    ) -> ChapterContent:
        """
        单章重写：此前各章的已渲染全文作为对话历史传入
        :param prior: (章节序号, 已渲染全文) 列表，按序号升序
        """
        relevant = select_relevant_characters(plan, canon.characters)
        system, user = build_chapter_prompt(canon, plan, relevant, spec.words, spec.instruction, spec.system)
        history: List[Dict[str, Any]] = []
        for index, text in prior:
            history.append({"role": "user", "content": PROMPT_HISTORY_REQUEST.format(index=index)})
            history.append({"role": "assistant", "content": text})
        if history:
            user = f"{user}\n{PROMPT_CONTINUE_FROM_HISTORY}"

        self._log(f"[单章重写] 第{plan.index}章 {plan.title} | 历史 {len(prior)} 章")
        text = await self._chat(spec.model, system, user, history=history or None)
        content = ChapterContent(index=plan.index, title=plan.title, content=text)
        self._persist(f"第{plan.index}章", "save_chapter", content)
        return content
