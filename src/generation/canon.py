"""
生成上下文（Canon）与章节提示词
"""
from typing import List, Sequence, Tuple

from schema.novel import Canon, Chapter, Character, Outline, Settings, Spec

from .prompts import SYSTEM_CHAPTER

CANON_STYLE = "叙事连贯、语言优雅、细节真实、情节合逻辑、保持统一世界观与人物性格稳定"
DEFAULT_CHAPTER_WORDS = 1200
RELEVANT_CHARACTER_LIMIT = 3

HUMANIZE_GUIDELINES = (
    "人设塑造：写具体的缺陷、反差与动机，给人物真实的习惯和藏起来的旧伤，不用空泛形容词。"
    "比如表面温柔其实社恐，一紧张就反复摸手边的东西；退休消防员走路有点跛，嘴毒心软，张口就是“想当年”。\n"
    "语言风格：多用短句和口语，允许跳跃和重复；不用“首先/其次”“不但/而且”“综上所述”，"
    "不用“维度”“底层逻辑”这类术语，换成大白话，可以用“额…”“其实吧”“也不是说”自然过渡。\n"
    "情节设计：允许犹豫和两难，加入意外的小细节和不完美的决定；不要善恶分明、步步最优，"
    "人物可以明知故犯或临时变卦，但前因后果要说得通。\n"
    "细节填充：用五感和生活碎片写情绪，留一点小意外和情绪锚点。"
    "比如眼泪砸在屏幕上晕开聊天记录、指尖把纸巾揉皱、喉咙发紧；伞被风掀翻、裤脚溅了泥；"
    "一张旧照片勾出阳光味的洗衣粉、外婆的方言、照片边角磨出的毛边。\n"
)


def build_canon(spec: Spec, outline: Outline, characters: List[Character], settings: Settings) -> Canon:
    """组装任务级共享上下文（纯函数，不调用模型）。"""
    return Canon(
        topic=spec.topic,
        title=outline.title,
        language=spec.language,
        style=CANON_STYLE,
        characters=list(characters),
        settings=settings,
    )


def select_relevant_characters(
    plan: Chapter,
    characters: Sequence[Character],
    top: int = RELEVANT_CHARACTER_LIMIT,
) -> List[Character]:
    """
    选出本章相关人物
    名字（忽略大小写）出现在章节标题或梗概中即视为相关；一个都没有时取前 top 个。
    """
    haystack = f"{plan.title}\n{plan.summary}".lower()
    picked = [c for c in characters if c.name and c.name.lower() in haystack]
    if not picked:
        picked = list(characters)
    return picked[:top]


def format_settings_block(settings: Settings) -> str:
    """渲染世界观设定块；设定为空时返回空串。"""
    if settings.is_empty():
        return ""
    lines: List[str] = []
    p = settings.protagonist
    if p.personality or p.background or p.goal:
        lines.append("主角：" + "|".join([p.personality, p.background, p.goal]))
    g = settings.golden_finger
    if g.name or g.activation or g.initial or g.upgrade or g.limit:
        lines.append("金手指：" + "|".join([g.name, g.activation, g.initial, g.upgrade, g.limit]))
    w = settings.world_fusion
    if w.relations or w.start_location or w.initial_crisis:
        lines.append("世界融合：" + "|".join([w.relations, w.start_location, w.initial_crisis]))
    r = settings.realms
    if r.current or r.next:
        lines.append("境界：" + "→".join([x for x in [r.current] + list(r.next) if x]))
    for realm, condition in r.breakthrough.items():
        lines.append(f"突破 {realm}：{condition}")
    return "\n".join(lines)


def build_chapter_prompt(
    canon: Canon,
    plan: Chapter,
    relevant: Sequence[Character],
    words: int,
    extra: str = "",
    system: str = "",
) -> Tuple[str, str]:
    """
    构建章节正文的 (system, user) 提示
    :param words: 目标字数，非正值按 1200
    :param extra: 附加指令
    :param system: 自定义系统指令，空则使用默认
    """
    sys_prompt = system or SYSTEM_CHAPTER
    lines = [
        f"风格：{canon.style}",
        f"标题：{canon.title}",
        f"章节：{plan.title}",
        f"梗概：{plan.summary}",
    ]
    if relevant:
        lines.append("人物：")
        lines.extend(c.sheet() for c in relevant)
    settings_block = format_settings_block(canon.settings)
    if settings_block:
        lines.append("设定：")
        lines.append(settings_block)
    target = words if words > 0 else DEFAULT_CHAPTER_WORDS
    lines.append(f"要求：输出该章节完整正文，字数不少于{target}字，避免与其他章节冲突或重复，保持人物设定与世界观一致")
    if canon.language and canon.language.lower() not in ("zh", "zh-cn", "chinese"):
        lines.append(f"输出语言：{canon.language}")
    if extra:
        lines.append(f"附加指令：{extra}")
    lines.append("人性化要求：")
    lines.append(HUMANIZE_GUIDELINES)
    return sys_prompt, "\n".join(lines)
