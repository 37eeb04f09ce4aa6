"""记忆模块：保存引导会话的目标、历史步骤和使用次数"""

import logging
from typing import Any, Dict, List, Optional

from .models import MAX_HISTORY, Step, Suggestion

logger = logging.getLogger(__name__)


class Memory:
    """记忆模块：一个目标对应一串按时间排列的步骤"""

    def __init__(self, goal: str = ""):
        self.goal = goal
        self.steps: List[Step] = []
        self.usage_count = 0
        self.last_url: Optional[str] = None

    def record(self, url: str, suggestion: Suggestion) -> Step:
        """记录一次被采纳的建议"""
        step = Step(
            url=url,
            target=suggestion.target,
            label=suggestion.label,
            confidence=suggestion.confidence,
            source=suggestion.source,
        )
        self.steps.append(step)
        self.last_url = url
        self.usage_count += 1

        if self.is_repeated_target(suggestion.target, threshold=3):
            logger.warning("连续 %d 次建议同一元素 %s，页面可能没有变化", 3, suggestion.target)
        return step

    def recent(self, limit: int = MAX_HISTORY) -> List[Step]:
        return self.steps[-limit:]

    def is_repeated_target(self, target: Optional[str], threshold: int = 2) -> bool:
        """判断最近是否重复建议了相同元素"""
        if target is None:
            return False
        recent = self.steps[-threshold:]
        count = sum(1 for s in recent if s.target == target)
        return count >= threshold

    def reset(self, goal: str = "") -> None:
        self.goal = goal
        self.steps = []
        self.last_url = None

    def format_history(self, last_n: int = MAX_HISTORY) -> str:
        """格式化内存中的历史记录"""
        if not self.steps:
            return "(无历史)"

        lines = []
        for i, step in enumerate(self.steps[-last_n:], start=max(1, len(self.steps) - last_n + 1)):
            lines.append(f"Step {i}: {step.label} [{step.source}] {round(step.confidence * 100)}% @ {step.url}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal": self.goal,
            "steps": [s.to_dict() for s in self.steps],
            "usageCount": self.usage_count,
            "lastUrl": self.last_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Memory":
        memory = cls(goal=str(data.get("goal", "")))
        memory.steps = [Step.from_dict(s) for s in data.get("steps", [])]
        memory.usage_count = int(data.get("usageCount", 0))
        memory.last_url = data.get("lastUrl")
        return memory
