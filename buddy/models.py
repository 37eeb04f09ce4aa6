"""数据模型定义"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

MAX_EXPLANATION_CHARS = 160
MAX_HISTORY = 3
MAX_ALTERNATES = 3

# Suggestion 的来源标记
SOURCE_LOCAL = "local"
SOURCE_LLM = "llm"
SOURCE_ALTERNATE = "alternate"
SOURCE_TIMEOUT = "timeout-fallback"


def clamp_confidence(value: Any) -> float:
    """把任意输入收敛到 [0, 1]，非数字或非有限值视为 0"""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, min(1.0, number))


def truncate_explanation(text: Any) -> str:
    return str(text or "").strip()[:MAX_EXPLANATION_CHARS]


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class Candidate:
    """单个可交互元素的快照"""
    id: str
    tag: str = ""
    role: str = ""
    control_type: str = ""
    type: str = ""
    text: str = ""
    acc_name: str = ""
    aria_label: str = ""
    labels: List[str] = field(default_factory=list)
    ancestor_text: str = ""
    dom_path: str = ""
    bbox: Optional[Dict[str, float]] = None  # {x, y, w, h}
    visible: bool = True
    clickable: bool = False
    disabled: bool = False
    locale: Optional[str] = None
    href: str = ""
    name_attr: str = ""
    placeholder: str = ""

    @property
    def display_label(self) -> str:
        for value in (self.text, self.acc_name, self.aria_label, self.name_attr):
            if value and value.strip():
                return value.strip()
        return ""

    @property
    def area(self) -> float:
        if not self.bbox:
            return 0.0
        return float(self.bbox.get("w") or 0) * float(self.bbox.get("h") or 0)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        """从扩展端的 camelCase 结构构造，兼容 snake_case"""
        bounds = _first(data, "bbox", "bounds")
        if bounds is not None:
            bounds = {
                "x": bounds.get("x", 0),
                "y": bounds.get("y", 0),
                "w": bounds.get("w", bounds.get("width", 0)),
                "h": bounds.get("h", bounds.get("height", 0)),
            }
        hints = data.get("confidenceHints") or {}
        labels = _first(data, "labels", default=[]) or []
        return cls(
            id=str(data["id"]),
            tag=str(_first(data, "tag", default="")),
            role=str(_first(data, "role", default="")),
            control_type=str(_first(data, "controlType", "control_type", default="")),
            type=str(_first(data, "type", default="")),
            text=str(_first(data, "text", default="")),
            acc_name=str(_first(data, "accName", "acc_name", default="")),
            aria_label=str(_first(data, "ariaLabel", "aria_label", default="")),
            labels=[str(label) for label in labels if label],
            ancestor_text=str(_first(data, "ancestorTextSample", "ancestor_text", default="")),
            dom_path=str(_first(data, "domPath", "dom_path", default="")),
            bbox=bounds,
            visible=bool(_first(data, "visible", default=True)),
            clickable=bool(_first(data, "clickable", default=False)),
            disabled=bool(_first(data, "disabled", default=False)),
            locale=_first(data, "locale", default=hints.get("locale")),
            href=str(_first(data, "href", default="")),
            name_attr=str(_first(data, "nameAttr", "name_attr", default="")),
            placeholder=str(_first(data, "placeholder", default="")),
        )

    def to_compact(self) -> Dict[str, Any]:
        """发给排序服务的精简字段"""
        return {
            "id": self.id,
            "tag": self.tag,
            "role": self.role,
            "type": self.type,
            "controlType": self.control_type,
            "text": self.text,
            "accName": self.acc_name,
            "ariaLabel": self.aria_label,
            "nameAttr": self.name_attr,
            "placeholder": self.placeholder,
            "labels": list(self.labels),
            "href": self.href,
            "visible": self.visible,
            "clickable": self.clickable,
            "disabled": self.disabled,
            "domPath": self.dom_path,
            "ancestorTextSample": self.ancestor_text,
        }


@dataclass
class ScoredCandidate:
    """本地打分结果"""
    candidate: Candidate
    score: float
    index: int


@dataclass
class Step:
    """引导会话中的单步记录"""
    url: str
    target: Optional[str]
    label: str
    confidence: float
    source: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "target": self.target,
            "label": self.label,
            "confidence": self.confidence,
            "source": self.source,
            "t": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            url=str(data.get("url", "")),
            target=data.get("target"),
            label=str(data.get("label", "")),
            confidence=clamp_confidence(data.get("confidence")),
            source=str(data.get("source", "")),
            timestamp=float(data.get("t") or data.get("timestamp") or 0),
        )


@dataclass
class Goal:
    """用户目标 + 最近几步历史"""
    text: str
    history: List[Step] = field(default_factory=list)

    def __post_init__(self):
        self.history = list(self.history)[-MAX_HISTORY:]


@dataclass
class Suggestion:
    """返回给调用方的建议，置信度与解释长度在构造时即被约束"""
    target: Optional[str]
    label: str
    confidence: float
    explanation: str
    source: str
    alternates: List[str] = field(default_factory=list)
    latency_ms: int = 0
    cache_hit: bool = False

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)
        self.explanation = truncate_explanation(self.explanation)
        self.alternates = list(self.alternates or [])[:MAX_ALTERNATES]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "label": self.label,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "source": self.source,
            "alternates": list(self.alternates),
            "latencyMs": self.latency_ms,
            "cacheHit": self.cache_hit,
        }


@dataclass
class SiteHint:
    """站点导航路径提示"""
    url: str  # 路径主干，如 /billing/invoices
    label: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "label": self.label, "score": self.score}


@dataclass
class HintsResult:
    hints: List[SiteHint]
    source: str  # sitemap|crawl|none|error|disabled
    fetched_ms: int
    ttl_seconds: int
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hints": [hint.to_dict() for hint in self.hints],
            "meta": {
                "source": self.source,
                "fetchedMs": self.fetched_ms,
                "ttlSeconds": self.ttl_seconds,
                "cached": self.cached,
            },
        }


class Outcome(Enum):
    """对账引擎的五种终态"""
    ACCEPTED = "accepted"
    USED_ALTERNATE = "used_alternate"
    DEGRADED_ORIGINAL = "degraded_original"
    UNAVAILABLE_ORIGINAL = "unavailable_original"
    NO_MATCH = "no_match"


@dataclass
class Resolution:
    """对账输出"""
    outcome: Outcome
    primary: Optional[Suggestion]
    alternates: List[Suggestion] = field(default_factory=list)
    used_alternate: bool = False
    status: str = ""
    original: Optional[Suggestion] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "primary": self.primary.to_dict() if self.primary else None,
            "alternates": [alt.to_dict() for alt in self.alternates],
            "usedAlternate": self.used_alternate,
            "status": self.status,
        }
