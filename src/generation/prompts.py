"""
Prompt 模板集合
"""

# ==================== 结构约定 ====================

OUTLINE_SCHEMA = '{"title":...,"chapters":[{"index":1,"title":...,"summary":...}]}'
CHAPTERS_SCHEMA = '[{"index":1,"title":...,"summary":...}]'
CHARACTERS_SCHEMA = '[{"name":...,"role":...,"traits":[...],"background":...}]'
FRAGMENTS_SCHEMA = '[{"title":...,"summary":...}]'

# ==================== 系统指令 ====================

SYSTEM_OUTLINE = "你是资深中文小说策划，输出结构化结果，只输出 JSON。"
SYSTEM_CHARACTERS = "你是资深中文小说人物设定专家，只输出 JSON 数组，不要任何额外文字。"
SYSTEM_PLANS = "你是资深中文小说剧情设计师，只输出 JSON 数组。"
SYSTEM_CHAPTER = "你是资深中文小说写作助手，严格遵守风格与世界观。"
SYSTEM_AUDIT = "你是严苛的一致性审查员，只输出 JSON 数组。"
SYSTEM_REVISE = "你是资深中文小说修订助手。"

SYSTEM_OUTLINE_EXTRACT = "你是资深小说大纲抽取专家，只输出 JSON。"
SYSTEM_OUTLINE_CHUNK = "你是资深小说大纲拆解专家，只输出 JSON 数组。"
SYSTEM_OUTLINE_NORMALIZE = "你是资深大纲拆解与扩展专家，只输出 JSON。"
SYSTEM_CHARACTER_EXTRACT = "你是资深人物设定抽取专家，只输出 JSON 数组。"

# ==================== 主题驱动 ====================

PROMPT_OUTLINE = """基于主题生成小说大纲，共 {chapter_count} 章。
返回 JSON：{schema}
只输出 JSON，不要任何说明或标注；每项只对应单独一章，禁止“1-30章”之类的范围表达。
主题：{topic}"""

PROMPT_CHARACTERS = """根据主题与大纲生成主要人物，返回 JSON 数组 {schema}，只输出 JSON 数组。
主题：{topic}
大纲标题：{title}"""

PROMPT_CHAPTER_PLANS = """把大纲中的每一章扩写为更详细的章节梗概，每章加入 3-5 个关键事件。
返回 JSON 数组 {schema}，只输出 JSON 数组，不要额外文字。
大纲标题：{title}
{chapter_lines}"""

PROMPT_OUTLINE_NORMALIZE = """将以下材料与现有大纲统一，调整为恰好 {chapter_count} 章，严格输出 {schema}。
要求：index 从 1 到 {chapter_count}，每项只对应单章；禁止“1-30章”之类的范围表达；不得把多章合并为一项；只输出 JSON。
材料：
{source}
现有大纲 JSON：
{outline_json}"""

# 解析失败后的严格重试：要求只输出代码块中的 JSON
PROMPT_STRICT_JSON = """```json
只输出完整 JSON，不要任何额外文字。结构：{schema}
```
{body}"""

# ==================== 一致性 ====================

PROMPT_AUDIT = """检查以下章节是否与风格、人物与世界观一致，返回 JSON 问题列表 [{{"chapter":章节序号,"type":...,"detail":...,"fix_hint":...}}]；没有问题时返回 []。
风格：{style}
人物：
{character_sheets}
{chapters}"""

PROMPT_REVISE = """根据问题修订章节内容，保持风格一致，不要引入新的冲突，只返回修订后的完整正文。
风格：{style}
章节：{title}
原文：
{content}"""

# ==================== 来源文本驱动 ====================

PROMPT_OUTLINE_EXTRACT = """从以下文本抽取小说大纲，返回 JSON：{schema}；只输出 JSON。
要求：每个 chapter 只代表单独一章；index 必须是单个数字，不得出现范围（如 1-30章）；不得做卷级汇总。
{source}"""

PROMPT_OUTLINE_CHUNK = """把以下文本片段拆解为逐章列表，返回 JSON 数组 {schema}；只输出 JSON 数组。
要求：每项只代表单独一章，不得卷级汇总或范围表达（如 1-30章）。
片段：
{chunk}"""

PROMPT_CHARACTER_EXTRACT = """从以下文本抽取主要人物，返回 JSON 数组 {schema}；只输出 JSON 数组。
标题：{title}
文本：
{source}"""

PROMPT_CHARACTER_CHUNK = """从以下文本片段抽取主要人物，返回 JSON 数组 {schema}；只输出 JSON 数组。
标题：{title}
片段：
{chunk}"""

# ==================== 单章重写 ====================

PROMPT_HISTORY_REQUEST = "请写第{index}章。"
PROMPT_CONTINUE_FROM_HISTORY = "前面各章正文已在对话中给出，请紧接前文写作，不要重复已有情节。"
