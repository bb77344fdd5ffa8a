"""
小说生成数据模型

定义生成请求、大纲、人物、设定、正文与一致性问题等结构，
以及从模型输出（已解码的 JSON）到这些结构的宽松转换。
"""
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from generation.extract import ParseError
from generation.presets import build_system_from_categories


def to_string_list(value: Any) -> List[str]:
    """
    将异构的特征字段规范为有序、去重的字符串列表。

    依次尝试：单个字符串 → 字符串数组 → 混合数组（逐项字符串化）。
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = [value]
    elif isinstance(value, list) and all(isinstance(item, str) for item in value):
        items = list(value)
    elif isinstance(value, list):
        items = [item if isinstance(item, str) else json.dumps(item, ensure_ascii=False) for item in value]
    else:
        raise ParseError(f"invalid traits format: {type(value).__name__}")

    result: List[str] = []
    seen = set()
    for item in items:
        text = item.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _require_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseError(f"{what} 应为 JSON 对象，实际为 {type(value).__name__}")
    return value


def _require_list(value: Any, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise ParseError(f"{what} 应为 JSON 数组，实际为 {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Spec:
    """生成请求；任务启动后不可变。"""
    topic: str = ""
    language: str = "zh"
    model: str = ""
    chapters: int = 0
    words: int = 0
    preset: str = ""
    instruction: str = ""
    system: str = ""
    gender: str = ""                    # 读者取向：male / female
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "language": self.language,
            "model": self.model,
            "chapters": self.chapters,
            "words": self.words,
            "preset": self.preset,
            "instruction": self.instruction,
            "system": self.system,
            "gender": self.gender,
            "categories": list(self.categories),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Spec":
        data = _require_dict(data, "spec")
        return cls(
            topic=_text(data.get("topic")),
            language=_text(data.get("language")) or "zh",
            model=_text(data.get("model")),
            chapters=int(data.get("chapters") or 0),
            words=int(data.get("words") or 0),
            preset=_text(data.get("preset")),
            instruction=_text(data.get("instruction")),
            system=_text(data.get("system")),
            gender=_text(data.get("gender")),
            categories=to_string_list(data.get("categories")),
            tags=to_string_list(data.get("tags")),
        )


def apply_spec_defaults(spec: Spec, config: Any) -> Spec:
    """按配置补全缺省参数，返回新的 Spec。"""
    system = spec.system
    if not system and (spec.gender or spec.categories or spec.tags):
        system = build_system_from_categories(spec.gender, spec.categories, spec.tags)
    return replace(
        spec,
        model=spec.model or config.model_name,
        words=spec.words if spec.words > 0 else (config.default_chapter_words or 1500),
        chapters=spec.chapters if spec.chapters > 0 else (config.default_chapters or 10),
        preset=spec.preset or config.default_preset or "generic",
        system=system,
    )


@dataclass
class Chapter:
    """大纲或章节规划中的单章"""
    index: int
    title: str = ""
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "title": self.title, "summary": self.summary}

    @classmethod
    def from_dict(cls, data: Any, position: int = 0) -> "Chapter":
        data = _require_dict(data, "chapter")
        # 模型给出的 index 不可信（可能是“1-30”之类的范围），后续统一重排
        return cls(index=position, title=_text(data.get("title")), summary=_text(data.get("summary")))


def reindex_chapters(chapters: List[Chapter]) -> List[Chapter]:
    """无论模型返回什么序号，一律重排为 1..N。"""
    for i, chapter in enumerate(chapters, 1):
        chapter.index = i
    return chapters


def chapters_from_json(value: Any) -> List[Chapter]:
    """解析章节数组；也接受 {"chapters": [...]} 包裹形式。"""
    if isinstance(value, dict) and isinstance(value.get("chapters"), list):
        value = value["chapters"]
    items = _require_list(value, "chapters")
    return reindex_chapters([Chapter.from_dict(item, i) for i, item in enumerate(items, 1)])


@dataclass
class Outline:
    """大纲：标题 + 有序章节梗概"""
    title: str = ""
    chapters: List[Chapter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "chapters": [c.to_dict() for c in self.chapters]}

    @classmethod
    def from_dict(cls, data: Any) -> "Outline":
        data = _require_dict(data, "outline")
        chapters = chapters_from_json(data.get("chapters") or [])
        if not chapters:
            raise ParseError("大纲缺少章节")
        return cls(title=_text(data.get("title")), chapters=chapters)


@dataclass
class Character:
    """人物"""
    name: str
    role: str = ""
    traits: List[str] = field(default_factory=list)
    background: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "role": self.role, "traits": list(self.traits), "background": self.background}

    @classmethod
    def from_dict(cls, data: Any) -> "Character":
        data = _require_dict(data, "character")
        return cls(
            name=_text(data.get("name")),
            role=_text(data.get("role")),
            traits=to_string_list(data.get("traits")),
            background=_text(data.get("background")),
        )

    def sheet(self) -> str:
        """单行人物卡：姓名|身份|特征|背景"""
        return "|".join([self.name, self.role, "、".join(self.traits), self.background])


def characters_from_json(value: Any) -> List[Character]:
    """解析人物数组；也接受 {"characters": [...]} 包裹形式。"""
    if isinstance(value, dict) and isinstance(value.get("characters"), list):
        value = value["characters"]
    characters = [Character.from_dict(item) for item in _require_list(value, "characters")]
    return [c for c in characters if c.name]


def merge_characters(a: Character, b: Character) -> Character:
    """
    合并同名人物
    - 特征：保序并集，去重去空
    - 背景 / 身份：取较长者（等长保留前者）
    """
    traits: List[str] = []
    for trait in list(a.traits) + list(b.traits):
        if trait and trait not in traits:
            traits.append(trait)
    return Character(
        name=a.name,
        role=b.role if len(b.role) > len(a.role) else a.role,
        traits=traits,
        background=b.background if len(b.background) > len(a.background) else a.background,
    )


@dataclass
class Protagonist:
    personality: str = ""
    background: str = ""
    goal: str = ""


@dataclass
class GoldenFinger:
    """金手指：名称 / 激活方式 / 初始能力 / 升级路线 / 限制"""
    name: str = ""
    activation: str = ""
    initial: str = ""
    upgrade: str = ""
    limit: str = ""


@dataclass
class WorldFusion:
    relations: str = ""
    start_location: str = ""
    initial_crisis: str = ""


@dataclass
class Realms:
    """境界体系：当前境界、后续境界、境界→突破条件"""
    current: str = ""
    next: List[str] = field(default_factory=list)
    breakthrough: Dict[str, str] = field(default_factory=dict)


@dataclass
class Settings:
    """世界观设定；生成失败时为空，不影响管线"""
    protagonist: Protagonist = field(default_factory=Protagonist)
    golden_finger: GoldenFinger = field(default_factory=GoldenFinger)
    world_fusion: WorldFusion = field(default_factory=WorldFusion)
    realms: Realms = field(default_factory=Realms)

    def is_empty(self) -> bool:
        return self == Settings()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protagonist": {
                "personality": self.protagonist.personality,
                "background": self.protagonist.background,
                "goal": self.protagonist.goal,
            },
            "golden_finger": {
                "name": self.golden_finger.name,
                "activation": self.golden_finger.activation,
                "initial": self.golden_finger.initial,
                "upgrade": self.golden_finger.upgrade,
                "limit": self.golden_finger.limit,
            },
            "world_fusion": {
                "relations": self.world_fusion.relations,
                "start_location": self.world_fusion.start_location,
                "initial_crisis": self.world_fusion.initial_crisis,
            },
            "realms": {
                "current": self.realms.current,
                "next": list(self.realms.next),
                "breakthrough": dict(self.realms.breakthrough),
            },
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        data = _require_dict(data, "settings")

        def section(*keys: str) -> Dict[str, Any]:
            for key in keys:
                value = data.get(key)
                if isinstance(value, dict):
                    return value
            return {}

        protagonist = section("protagonist")
        golden = section("golden_finger")
        # 通用预设使用 signature_elements / world 结构
        signature = section("signature_elements")
        fusion = section("world_fusion", "world")
        realms = section("realms")
        breakthrough = realms.get("breakthrough")
        return cls(
            protagonist=Protagonist(
                personality=_text(protagonist.get("personality")),
                background=_text(protagonist.get("background")),
                goal=_text(protagonist.get("goal")),
            ),
            golden_finger=GoldenFinger(
                name=_text(golden.get("name") or signature.get("devices")),
                activation=_text(golden.get("activation")),
                initial=_text(golden.get("initial")),
                upgrade=_text(golden.get("upgrade") or signature.get("progression")),
                limit=_text(golden.get("limit") or signature.get("constraints")),
            ),
            world_fusion=WorldFusion(
                relations=_text(fusion.get("relations")),
                start_location=_text(fusion.get("start_location")),
                initial_crisis=_text(fusion.get("initial_crisis")),
            ),
            realms=Realms(
                current=_text(realms.get("current")),
                next=to_string_list(realms.get("next")),
                breakthrough={
                    _text(k): _text(v) for k, v in breakthrough.items()
                } if isinstance(breakthrough, dict) else {},
            ),
        )


@dataclass(frozen=True)
class Canon:
    """单个任务内所有章节共享的生成上下文"""
    topic: str
    title: str
    language: str
    style: str
    characters: List[Character] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)


@dataclass
class ChapterContent:
    index: int
    title: str
    content: str


@dataclass
class CoherenceIssue:
    chapter: int
    type: str = ""
    detail: str = ""
    fix_hint: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CoherenceIssue"]:
        if not isinstance(data, dict):
            return None
        try:
            chapter = int(str(data.get("chapter", "")).strip())
        except ValueError:
            return None
        return cls(
            chapter=chapter,
            type=_text(data.get("type")),
            detail=_text(data.get("detail")),
            fix_hint=_text(data.get("fix_hint")),
        )


def issues_from_json(value: Any) -> List[CoherenceIssue]:
    """解析一致性问题列表；无法识别章节号的条目被丢弃。"""
    if isinstance(value, dict) and isinstance(value.get("issues"), list):
        value = value["issues"]
    items = _require_list(value, "issues")
    return [issue for issue in (CoherenceIssue.from_dict(item) for item in items) if issue is not None]


@dataclass
class NovelResult:
    """一次完整管线运行的产物"""
    outline: Outline
    characters: List[Character]
    plans: List[Chapter]
    settings: Settings
    contents: List[ChapterContent]
    issues: List[CoherenceIssue] = field(default_factory=list)
