"""
设定预设与题材目录

预设决定世界观设定阶段使用的系统指令与输出结构：
- xiyou_shuangwen：西游衍生玄幻爽文（含金手指与境界体系）
- generic：通用设定模板
其余非空字符串视为自定义系统指令，配合通用结构使用。
"""
from typing import Dict, List, Sequence, Tuple

PRESET_XIYOU = "xiyou_shuangwen"
PRESET_GENERIC = "generic"

PRESET_XIYOU_SYSTEM = """你是专业的玄幻爽文 + 西游衍生小说创作者，熟悉以下规则：
1. 世界观：以西游三界（人 / 神 / 妖 / 魔 / 佛）为底，可加入原创势力，但要合乎玄幻逻辑；
2. 境界体系：凡仙→地仙→天仙→金仙→太乙金仙→大罗金仙→准圣→圣人→天道→鸿蒙，每一境都有清晰的能力标签；
3. 爽点节奏：3-5 章一个小爽点，10-15 章一个中爽点，约 30 章一个大爽点；打脸直接，升级利落；
4. 金手指：必须和西游绑定，有成长空间也有代价，前期不能无敌；
5. 语言：简洁有力，动作生动，对白贴合人物（主角桀骜、反派嚣张、配角烘托），少写冗余描写；
6. 原创：主角原创，原著角色只作辅助，剧情不照搬西游，要有新冲突；
7. 合规：不写敏感、血腥暴力或低俗内容。"""

GENERIC_SETTING_SYSTEM = "你是资深小说设定与世界观构建专家。根据给出的主题或材料生成结构化设定，逻辑自洽、风格统一、避免模板腔，只输出 JSON。"

PRESET_XIYOU_SCHEMA = (
    '只输出如下结构的 JSON，不要任何额外文字或注释：'
    '{"protagonist":{"personality":...,"background":...,"goal":...},'
    '"golden_finger":{"name":...,"activation":...,"initial":...,"upgrade":...,"limit":...},'
    '"world_fusion":{"relations":...,"start_location":...,"initial_crisis":...},'
    '"realms":{"current":...,"next":[...],"breakthrough":{"境界":"突破条件"}}}。'
    "要求：符合爽文逻辑，金手指与西游强绑定，初始危机能尽快引出第一个爽点。"
)

GENERIC_SETTING_SCHEMA = (
    '只输出如下结构的 JSON，不要任何额外文字或注释：'
    '{"protagonist":{"personality":...,"background":...,"goal":...},'
    '"signature_elements":{"devices":...,"constraints":...,"progression":...},'
    '"world":{"relations":...,"start_location":...,"initial_crisis":...}}'
)

# 题材目录：仅用于提示词提示
MALE_CATEGORIES = [
    "都市高武", "东方仙侠", "传统玄幻", "悬疑灵异", "都市脑洞", "玄幻脑洞", "历史古代", "历史脑洞",
    "科幻末世", "西幻", "都市日常", "都市修真", "战神", "赘婿", "神医", "武侠", "军事",
]
FEMALE_CATEGORIES = [
    "宫斗宅斗", "豪门总裁", "年代", "星光璀璨", "玄幻言情", "种田", "现言脑洞", "快穿", "古言脑洞",
    "青春甜宠", "医术", "职场婚恋", "悬疑恋爱", "双男主", "双女主", "民国言情", "游戏体育", "马甲",
]
TAGS = ["脑洞系列", "重生复仇", "穿书逆袭", "系统流", "签到/直播", "末世囤物资", "基建流"]


def get_categories() -> Dict[str, List[str]]:
    """题材目录（男频 / 女频 / 标签）。"""
    return {"male": list(MALE_CATEGORIES), "female": list(FEMALE_CATEGORIES), "tags": list(TAGS)}


def _audience_hint(gender: str) -> str:
    lowered = (gender or "").strip().lower()
    if lowered == "male":
        return "男频取向，视角以男性为主，爽点更直接。"
    if lowered == "female":
        return "女频取向，情感与关系戏更足，细节更柔和。"
    return ""


def build_setting_prompt(
    preset: str,
    topic: str,
    gender: str = "",
    categories: Sequence[str] = (),
    tags: Sequence[str] = (),
) -> Tuple[str, str]:
    """
    构建设定阶段的 (system, user) 提示
    :param preset: 预设名或自定义系统指令
    """
    preset = (preset or "").strip()
    if preset == PRESET_XIYOU:
        system, schema = PRESET_XIYOU_SYSTEM, PRESET_XIYOU_SCHEMA
    elif preset in ("", PRESET_GENERIC):
        system, schema = GENERIC_SETTING_SYSTEM, GENERIC_SETTING_SCHEMA
    else:
        system, schema = preset, GENERIC_SETTING_SCHEMA

    lines: List[str] = []
    if topic:
        lines.append(f"主题：{topic}")
    lines.append(schema)
    audience = _audience_hint(gender)
    if audience:
        lines.append(f"读者取向：{audience}")
    if categories:
        lines.append("分类偏好：" + ", ".join(categories))
    if tags:
        lines.append("标签：" + ", ".join(tags))
    return system, "\n".join(lines)


def build_system_from_categories(gender: str, categories: Sequence[str], tags: Sequence[str]) -> str:
    """根据读者取向、分类与标签生成写作系统指令。"""
    parts = ["你是资深小说写作助手，保持自然口语化与细节真实，避免模板化措辞与机械排序。"]
    audience = _audience_hint(gender)
    if audience:
        parts.append(audience)
    if categories:
        parts.append("分类要求：" + ", ".join(categories) + "。")
    if tags:
        parts.append("标签：" + ", ".join(tags) + "。")
    return " ".join(parts)
