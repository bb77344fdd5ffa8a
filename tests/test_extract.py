import json
import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

from generation.extract import ParseError, decode_json, extract_json


def test_fenced_block_with_language_tag():
    assert extract_json('```json\n{"a":1}\n```') == '{"a":1}'


def test_prose_around_object():
    assert extract_json('prefix noise {"a":1} suffix noise') == '{"a":1}'


def test_truncated_output_does_not_raise():
    assert extract_json('{"a":1') == '{"a":1'


def test_truncated_cuts_at_last_closing_bracket():
    assert extract_json('好的：{"a":{"b":1}, "c":') == '{"a":{"b":1}'


def test_brackets_inside_strings_are_ignored():
    text = '结果如下 {"title":"第{1}章]","note":"引号\\"里的}"} 以上'
    payload = extract_json(text)
    assert json.loads(payload) == {"title": "第{1}章]", "note": '引号"里的}'}


def test_array_payload_before_object():
    assert extract_json('列表：[{"name":"甲"}] 完') == '[{"name":"甲"}]'


def test_no_bracket_returns_text_unchanged():
    assert extract_json("抱歉，我无法完成") == "抱歉，我无法完成"


def test_fence_wins_over_brackets_in_leading_prose():
    text = '以下是第[1]版大纲：\n```json\n{"title":"t","chapters":[]}\n```'
    assert extract_json(text) == '{"title":"t","chapters":[]}'


def test_fence_inside_json_string_is_not_unwrapped():
    text = '{"code":"```python\\nprint(1)\\n```"}'
    assert extract_json(text) == text


@pytest.mark.parametrize(
    "text",
    [
        '```json\n{"a":1}\n```',
        'prefix {"a":[1,2,{"b":"}"}]} suffix',
        '{"a":1',
        "no json at all",
        "",
        '```\n[1,2]\n```',
        '说明 [ {"x": "\\\\"} ] 尾巴 ]',
        '以下是第[1]版大纲：\n```json\n{"title":"t","chapters":[]}\n```',
    ],
)
def test_extract_is_idempotent(text):
    once = extract_json(text)
    assert extract_json(once) == once


def test_decode_json_checks_top_level_type():
    assert decode_json('输出：{"a":1}', dict) == {"a": 1}
    with pytest.raises(ParseError):
        decode_json("[1,2]", dict)


def test_decode_json_raises_parse_error_on_garbage():
    with pytest.raises(ParseError):
        decode_json("抱歉，我无法完成")
    with pytest.raises(ParseError):
        decode_json("")
    with pytest.raises(ParseError):
        decode_json('{"a":1')
