"""本地打分模块：不依赖网络的确定性启发式排序"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import Candidate, ScoredCandidate

MAX_RANKED = 50

# 目标关键词 -> 相关区域词，站点提示打分也共用这张表
GOAL_AREAS = {
    "email": ["settings", "account", "profile", "preferences"],
    "subscription": ["billing", "subscription", "subscriptions", "payment"],
    "invoice": ["billing", "invoices", "payment", "account"],
    "user": ["users", "admin", "manage", "team"],
    "password": ["security", "password", "account", "settings"],
    "billing": ["billing", "payment", "subscription", "account"],
    "cancel": ["subscription", "billing", "account", "manage"],
}

_SECURITY_GOAL = re.compile(r"password|security")
_IDENTITY_GOAL = re.compile(r"email|name")
_REASONABLE_AREA = (200, 200000)


def normalize(text: Optional[str]) -> str:
    """小写、去除变音符号、去首尾空白"""
    decomposed = unicodedata.normalize("NFD", (text or "").lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip()


@dataclass
class ScoreResult:
    ranked: List[ScoredCandidate]
    best: Optional[Candidate]
    best_score: float

    def top(self, limit: int = MAX_RANKED) -> List[Candidate]:
        return [item.candidate for item in self.ranked[:limit]]


class LocalScorer:
    """
    按目标文本给候选元素打分。

    同样的目标与候选文本必然得到同样的分数，分数不做归一化。
    """

    def score_candidate(self, goal_norm: str, candidate: Candidate) -> float:
        tokens = [tok for tok in goal_norm.split() if tok]
        hay_acc = normalize(candidate.acc_name)
        hay_text = normalize(candidate.text)
        hay_labels = normalize(" ".join(candidate.labels))
        hay_aria = normalize(candidate.aria_label)
        hay_anc = normalize(candidate.ancestor_text)

        score = 0.0
        if goal_norm and (goal_norm in hay_acc or goal_norm in hay_text):
            score += 3

        keyword_hits = 0
        for token in tokens:
            if token in hay_acc or token in hay_text or token in hay_labels or token in hay_aria:
                score += 2
                keyword_hits += 1
            elif token in hay_anc:
                score += 1

        if _SECURITY_GOAL.search(goal_norm):
            if "password" in hay_anc or "security" in hay_anc:
                score += 2
            if candidate.control_type in ("password", "submit"):
                score += 1
        if _IDENTITY_GOAL.search(goal_norm):
            if candidate.control_type in ("email", "text") and keyword_hits:
                score += 2
            if candidate.labels:
                score += 1
        if self._area_prior(goal_norm, (hay_acc, hay_text, hay_aria)):
            score += 1

        if candidate.clickable:
            score += 1
        if candidate.disabled:
            score -= 3

        low, high = _REASONABLE_AREA
        if low < candidate.area < high:
            score += 0.5

        return score

    def _area_prior(self, goal_norm: str, haystacks: Iterable[str]) -> bool:
        areas = [area for keyword, words in GOAL_AREAS.items() if keyword in goal_norm for area in words]
        if not areas:
            return False
        return any(area in hay for hay in haystacks for area in areas)

    def score(self, goal: str, candidates: List[Candidate]) -> ScoreResult:
        """返回按分数降序（稳定排序）的结果，以及最佳候选"""
        goal_norm = normalize(goal)
        scored = [
            ScoredCandidate(candidate=c, score=self.score_candidate(goal_norm, c), index=i)
            for i, c in enumerate(candidates)
        ]
        ranked = sorted(scored, key=lambda item: -item.score)

        # 禁用元素只在没有任何正分可用元素时才会被选中
        best = next((item for item in ranked if not item.candidate.disabled and item.score > 0), None)
        if best is None and ranked:
            best = ranked[0]
        return ScoreResult(
            ranked=ranked,
            best=best.candidate if best else None,
            best_score=best.score if best else 0.0,
        )

    def top(self, goal: str, candidates: List[Candidate], limit: int = MAX_RANKED) -> List[Candidate]:
        return self.score(goal, candidates).top(limit)

    def alternates(
        self,
        goal: str,
        candidates: List[Candidate],
        exclude: Iterable[str] = (),
        limit: int = 5,
    ) -> List[ScoredCandidate]:
        """
        正分候选，同分时标签更长（更具体）的优先。

        只要有正分的可用元素，禁用元素就不会出现在结果中。
        """
        excluded = set(exclude)
        result = self.score(goal, candidates)
        positive = [item for item in result.ranked if item.score > 0 and item.candidate.id not in excluded]
        pool = [item for item in positive if not item.candidate.disabled] or positive
        pool.sort(key=lambda item: (-item.score, -len(item.candidate.display_label), item.index))
        return pool[:limit]
