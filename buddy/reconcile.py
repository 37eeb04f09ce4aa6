"""对账模块：在 LLM 建议与本地备选之间做出最终选择"""

import logging
from dataclasses import replace
from typing import Awaitable, Callable, List, Optional

from .models import (
    MAX_ALTERNATES,
    SOURCE_ALTERNATE,
    SOURCE_LLM,
    Candidate,
    Outcome,
    Resolution,
    Suggestion,
)
from .scorer import LocalScorer

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.55
UNAVAILABLE_CAP = 0.5
ALTERNATE_PROBES = 5

Checker = Callable[[str], Awaitable[bool]]

STATUS_NO_MATCH = "No matching elements found. Please refine your request."
STATUS_LOW_CONFIDENCE = "Not fully certain; offering alternates for a safer choice."
STATUS_SAFER_ALTERNATE = "Not fully certain; choosing a safer alternate."
STATUS_UNAVAILABLE = "Original suggestion is unavailable on the page right now."
STATUS_UNAVAILABLE_ALTERNATES = "Primary suggestion unavailable; showing alternates."


def names_target(oracle: Optional[Suggestion]) -> bool:
    """建议是否指向过某个元素；被拒绝的模型 id 以 target=None、source=llm 返回"""
    if oracle is None:
        return False
    return oracle.target is not None or oracle.source == SOURCE_LLM


def snapshot_checker(candidates: List[Candidate]) -> Checker:
    """没有实时页面时，以快照中的 id 作为存在性判断"""
    known = {c.id for c in candidates}

    async def check(target_id: str) -> bool:
        return target_id in known

    return check


class Reconciler:
    """
    五种终态：ACCEPTED / USED_ALTERNATE / DEGRADED_ORIGINAL /
    UNAVAILABLE_ORIGINAL / NO_MATCH。

    返回的 primary.target 只要不为空，就一定刚刚通过了实时存在性检查；
    置信度再高也不能代替这一检查。
    """

    def __init__(
        self,
        scorer: Optional[LocalScorer] = None,
        threshold: float = DEFAULT_THRESHOLD,
        max_alternates: int = MAX_ALTERNATES,
    ):
        self.scorer = scorer or LocalScorer()
        self.threshold = threshold
        self.max_alternates = max_alternates

    def sanitize(self, oracle: Optional[Suggestion], candidates: List[Candidate]) -> Optional[Suggestion]:
        """只有 target 在候选集合中的建议才被接受"""
        if oracle is None or oracle.target is None:
            return None
        by_id = {c.id: c for c in candidates}
        candidate = by_id.get(oracle.target)
        if candidate is None:
            return None
        return replace(
            oracle,
            label=candidate.display_label or oracle.label.strip() or "Open",
            explanation=oracle.explanation or "This element matches the goal.",
        )

    async def _confirm(self, checker: Checker, target_id: str) -> bool:
        try:
            return bool(await checker(target_id))
        except Exception as e:
            logger.warning("存在性检查失败 %s: %s", target_id, e)
            return False

    async def confirmed_alternates(
        self,
        goal: str,
        candidates: List[Candidate],
        checker: Checker,
        exclude: Optional[str],
    ) -> List[Suggestion]:
        probes = self.scorer.alternates(goal, candidates, exclude=[exclude] if exclude else [], limit=ALTERNATE_PROBES)
        confirmed: List[Suggestion] = []
        for item in probes:
            if not await self._confirm(checker, item.candidate.id):
                continue
            rank = len(confirmed)
            confirmed.append(Suggestion(
                target=item.candidate.id,
                label=item.candidate.display_label or "Open",
                confidence=0.5 - rank * 0.05,
                explanation=(
                    "Not fully certain; this seems closest on the current page."
                    if rank == 0
                    else "Not fully certain; alternate option from current page."
                ),
                source=SOURCE_ALTERNATE,
            ))
            if len(confirmed) >= self.max_alternates:
                break
        return confirmed

    async def resolve(
        self,
        goal: str,
        candidates: List[Candidate],
        oracle: Optional[Suggestion],
        checker: Optional[Checker] = None,
    ) -> Resolution:
        checker = checker or snapshot_checker(candidates)
        original = self.sanitize(oracle, candidates)

        original_valid = False
        if original is not None:
            original_valid = await self._confirm(checker, original.target)
            if original_valid and original.confidence > self.threshold:
                return Resolution(
                    outcome=Outcome.ACCEPTED,
                    primary=original,
                    status=original.explanation,
                    original=original,
                )

        stale = names_target(oracle) and not original_valid
        exclude = oracle.target if oracle is not None else None
        alternates = await self.confirmed_alternates(goal, candidates, checker, exclude)

        if alternates:
            first = alternates[0]
            primary = replace(
                first,
                confidence=min(first.confidence, self.threshold),
                explanation=(
                    "Not fully certain; using the closest alternate instead."
                    if not stale
                    else "Primary suggestion unavailable; this alternate should be the closest match."
                ),
            )
            return Resolution(
                outcome=Outcome.USED_ALTERNATE,
                primary=primary,
                alternates=alternates,
                used_alternate=True,
                status=STATUS_UNAVAILABLE_ALTERNATES if stale else STATUS_SAFER_ALTERNATE,
                original=original,
            )

        if original_valid:
            return Resolution(
                outcome=Outcome.DEGRADED_ORIGINAL,
                primary=replace(
                    original,
                    confidence=min(original.confidence, self.threshold),
                    explanation="Not fully certain; no better matches found on this page.",
                ),
                status=STATUS_LOW_CONFIDENCE,
                original=original,
            )

        if stale:
            # 有建议但在页面上找不到：target 置空，报告不可用
            unavailable = original or oracle
            return Resolution(
                outcome=Outcome.UNAVAILABLE_ORIGINAL,
                primary=replace(
                    unavailable,
                    target=None,
                    alternates=[],
                    confidence=min(unavailable.confidence, UNAVAILABLE_CAP),
                    explanation="Not fully certain; suggestion unavailable on the page right now.",
                ),
                status=STATUS_UNAVAILABLE,
                original=original,
            )

        return Resolution(outcome=Outcome.NO_MATCH, primary=None, status=STATUS_NO_MATCH)
