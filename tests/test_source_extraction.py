import asyncio
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from generation.extract import ExtractionError
from generation.prompts import (
    SYSTEM_CHARACTER_EXTRACT,
    SYSTEM_OUTLINE_CHUNK,
    SYSTEM_OUTLINE_EXTRACT,
    SYSTEM_OUTLINE_NORMALIZE,
)
from generation.services import SourceExtractionService
from models.base import ModelCallError

# 三段，每段 30 字，分片预算 40 时恰好每段一片
SOURCE = "\n\n".join(["甲" * 30, "乙" * 30, "丙" * 30])


class ScriptedChat:
    """按系统指令依次吐出预设回复；回复为异常实例时抛出。"""

    def __init__(self, script):
        self.script = {system: list(replies) for system, replies in script.items()}
        self.calls = []

    async def __call__(self, system, user):
        self.calls.append((system, user))
        reply = self.script[system].pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def count(self, system):
        return sum(1 for s, _ in self.calls if s == system)


def fragments(*titles):
    return json.dumps([{"title": t, "summary": f"{t}梗概"} for t in titles], ensure_ascii=False)


def test_chunked_outline_skips_unparseable_chunk():
    chat = ScriptedChat(
        {
            SYSTEM_OUTLINE_EXTRACT: ["大纲如下：第一章……", "还是没有 JSON"],
            SYSTEM_OUTLINE_CHUNK: [fragments("一", "二"), "这一段我读不懂", fragments("三")],
        }
    )
    logs = []
    service = SourceExtractionService(chat, chunk_chars=40, log=logs.append)
    outline = asyncio.run(service.extract_outline(SOURCE, topic="残卷"))

    assert outline.title == "残卷"
    assert [(c.index, c.title) for c in outline.chapters] == [(1, "一"), (2, "二"), (3, "三")]
    assert chat.count(SYSTEM_OUTLINE_CHUNK) == 3
    assert any(line.startswith("[分片大纲失败] chunk=1") for line in logs)


def test_chunked_outline_title_from_first_fragment_without_topic():
    chat = ScriptedChat(
        {
            SYSTEM_OUTLINE_EXTRACT: ["?", "?"],
            SYSTEM_OUTLINE_CHUNK: ["??", fragments("开端"), fragments("结局")],
        }
    )
    outline = asyncio.run(SourceExtractionService(chat, chunk_chars=40).extract_outline(SOURCE))
    assert outline.title == "开端"


def test_every_chunk_failing_is_an_extraction_error():
    chat = ScriptedChat(
        {
            SYSTEM_OUTLINE_EXTRACT: ["?", "?"],
            SYSTEM_OUTLINE_CHUNK: ["?", "?", "?"],
        }
    )
    with pytest.raises(ExtractionError):
        asyncio.run(SourceExtractionService(chat, chunk_chars=40).extract_outline(SOURCE))


def test_strict_call_error_is_raised_when_chunks_also_fail():
    chat = ScriptedChat(
        {
            SYSTEM_OUTLINE_EXTRACT: ["?", ModelCallError("strict down")],
            SYSTEM_OUTLINE_CHUNK: ["?", "?", "?"],
        }
    )
    with pytest.raises(ModelCallError, match="strict down"):
        asyncio.run(SourceExtractionService(chat, chunk_chars=40).extract_outline(SOURCE))


def test_strict_retry_success_skips_chunking():
    outline = json.dumps({"title": "正本", "chapters": [{"index": 5, "title": "唯一"}]}, ensure_ascii=False)
    chat = ScriptedChat({SYSTEM_OUTLINE_EXTRACT: ["?", "```json\n" + outline + "\n```"]})
    result = asyncio.run(SourceExtractionService(chat, chunk_chars=40).extract_outline(SOURCE))
    assert result.title == "正本"
    assert result.chapters[0].index == 1
    assert chat.count(SYSTEM_OUTLINE_CHUNK) == 0


def test_normalization_mismatch_keeps_draft():
    draft = json.dumps({"title": "草稿", "chapters": [{"title": "一"}, {"title": "二"}]}, ensure_ascii=False)
    wrong = json.dumps({"title": "草稿", "chapters": [{"title": "一"}, {"title": "二"}, {"title": "三"}]}, ensure_ascii=False)
    chat = ScriptedChat({SYSTEM_OUTLINE_EXTRACT: [draft], SYSTEM_OUTLINE_NORMALIZE: [wrong]})
    outline = asyncio.run(SourceExtractionService(chat).extract_outline(SOURCE, chapter_count=4))
    assert [c.title for c in outline.chapters] == ["一", "二"]


def test_normalization_match_replaces_draft():
    draft = json.dumps({"title": "草稿", "chapters": [{"title": "一"}]}, ensure_ascii=False)
    fixed = json.dumps({"title": "定稿", "chapters": [{"title": "上"}, {"title": "下"}]}, ensure_ascii=False)
    chat = ScriptedChat({SYSTEM_OUTLINE_EXTRACT: [draft], SYSTEM_OUTLINE_NORMALIZE: [fixed]})
    outline = asyncio.run(SourceExtractionService(chat).extract_outline(SOURCE, chapter_count=2))
    assert (outline.title, [c.index for c in outline.chapters]) == ("定稿", [1, 2])


def test_chunked_characters_are_merged_by_name():
    chunk_1 = json.dumps(
        [
            {"name": "阿青", "role": "剑客", "traits": ["寡言"], "background": "江南"},
            {"name": "范蠡", "role": "谋士", "traits": "深沉", "background": "越国"},
        ],
        ensure_ascii=False,
    )
    chunk_3 = json.dumps(
        [{"name": "阿青", "role": "越女", "traits": ["寡言", "护短"], "background": "会稽山下的牧羊女"}],
        ensure_ascii=False,
    )
    chat = ScriptedChat(
        {
            SYSTEM_CHARACTER_EXTRACT: ["人物表见下", "还是没有", chunk_1, "坏掉的分片", chunk_3],
        }
    )
    logs = []
    characters = asyncio.run(
        SourceExtractionService(chat, chunk_chars=40, log=logs.append).extract_characters(SOURCE, "越女剑")
    )

    assert [c.name for c in characters] == ["阿青", "范蠡"]
    assert characters[0].traits == ["寡言", "护短"]
    assert characters[0].background == "会稽山下的牧羊女"
    assert characters[0].role == "剑客"
    assert any(line.startswith("[分片人物失败] chunk=1") for line in logs)
