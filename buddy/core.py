"""Button Buddy 核心类：把目标解析为页面上的一个可操作元素"""

import asyncio
import logging
from typing import List, Optional
from openai import AsyncOpenAI
from playwright.async_api import async_playwright

from .cache import TTLCache
from .config import Settings
from .controller import Controller
from .errors import InputError, InvalidOriginError
from .hints import SiteHintProvider
from .memory import Memory
from .models import SOURCE_LLM, SOURCE_LOCAL, Candidate, Resolution, SiteHint, Step, Suggestion
from .perception import Perception
from .ranker import Ranker
from .reconcile import Checker, Reconciler
from .scorer import LocalScorer, ScoreResult

logger = logging.getLogger(__name__)

PROVISIONAL_MIN_SCORE = 4
LOCAL_ONLY_CONFIDENCE = 0.3

SOURCE_NAMES = {
    SOURCE_LOCAL: "Local match",
    SOURCE_LLM: "LLM rank",
}


def overlay_label(suggestion: Suggestion) -> str:
    name = SOURCE_NAMES.get(suggestion.source, "Match")
    return f"{name} • {round(suggestion.confidence * 100)}% — {suggestion.explanation}"


class ButtonBuddy:
    """目标 -> 元素 解析流程：本地打分 -> 站点提示 -> LLM 排序 -> 对账"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str,
        settings: Optional[Settings] = None,
        hint_provider: Optional[SiteHintProvider] = None,
    ):
        self.settings = settings or Settings()
        self.scorer = LocalScorer()
        self.rank_cache = TTLCache(self.settings.rank_cache_ttl_s, self.settings.rank_cache_max)
        self.ranker: Optional[Ranker] = None
        if client is not None:
            self.ranker = Ranker(client, model, cache=self.rank_cache, timeout_ms=self.settings.llm_timeout_ms)
        self.hint_provider = hint_provider or SiteHintProvider(
            enabled=self.settings.enable_site_hints,
            cache=TTLCache(self.settings.hints_cache_ttl_s, max_entries=200),
            timeout_s=self.settings.hint_request_timeout_s,
        )
        self.reconciler = Reconciler(self.scorer, threshold=self.settings.confidence_threshold)
        self.perception = Perception()
        self.memory = Memory()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ButtonBuddy":
        settings = settings or Settings()
        client = None
        if settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        else:
            logger.warning("未设置 OPENAI_API_KEY，只使用本地打分")
        return cls(client, settings.model, settings=settings)

    def provisional(self, result: ScoreResult) -> Optional[Suggestion]:
        """本地分数足够高时，在 LLM 返回之前先给出一个临时建议"""
        if result.best is None or result.best_score < PROVISIONAL_MIN_SCORE:
            return None
        return Suggestion(
            target=result.best.id,
            label=result.best.display_label or "Open",
            confidence=min(95, 60 + round(result.best_score * 6)) / 100,
            explanation="Local match",
            source=SOURCE_LOCAL,
        )

    async def site_hints(self, origin: str, goal: str) -> List[SiteHint]:
        try:
            result = await self.hint_provider.hints(origin, goal)
        except InvalidOriginError as e:
            logger.warning("跳过站点提示: %s", e.message)
            return []
        return result.hints

    async def rank(self, goal: str, candidates: List[Candidate], site_hints: Optional[List[SiteHint]] = None) -> Suggestion:
        """只做排序，不做对账；没有配置 LLM 时返回本地最佳候选"""
        goal = (goal or "").strip()
        if not goal or not candidates:
            raise InputError("Missing goal or candidates")
        result = self.scorer.score(goal, candidates)
        if self.ranker is not None:
            return await self.ranker.rank(goal, result.top(), site_hints=site_hints)

        provisional = self.provisional(result)
        if provisional:
            return provisional
        best = result.best
        return Suggestion(
            target=best.id,
            label=best.display_label or "Open",
            confidence=LOCAL_ONLY_CONFIDENCE,
            explanation="Local heuristic guess; ranking service not configured.",
            source=SOURCE_LOCAL,
        )

    async def resolve(
        self,
        goal: str,
        candidates: List[Candidate],
        history: Optional[List[Step]] = None,
        origin: Optional[str] = None,
        checker: Optional[Checker] = None,
    ) -> Resolution:
        """
        解析一次目标。

        目标为空或候选为空时直接抛出 InputError；
        LLM 的超时、解析失败、越界 id 都只会降级，不会抛给调用方。
        """
        goal = (goal or "").strip()
        if not goal:
            raise InputError("Missing goal.")
        if not candidates:
            raise InputError("No candidates to rank.")

        result = self.scorer.score(goal, candidates)
        top = result.top()
        hints = await self.site_hints(origin, goal) if origin else []

        oracle = None
        if self.ranker is not None:
            oracle = await self.ranker.rank(goal, top, site_hints=hints, history=history)

        resolution = await self.reconciler.resolve(goal, candidates, oracle, checker=checker)
        logger.info(
            "目标 %r -> %s (target=%s)",
            goal,
            resolution.outcome.value,
            resolution.primary.target if resolution.primary else None,
        )
        return resolution

    async def run(self, goal: str, start_url: str, max_steps: int = 10, headless: bool = False):
        """
        在真实浏览器中逐步引导：每一步高亮一个元素，由用户自己点击。
        """
        self.memory.reset(goal)
        loop = asyncio.get_running_loop()

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=headless)
            page = await browser.new_page()
            controller = Controller(page)
            await page.goto(start_url)
            await asyncio.sleep(2)

            for step in range(max_steps):
                print(f"\n{'='*60}")
                print(f"Step {step + 1}/{max_steps}  {page.url}")
                print(f"{'='*60}")

                candidates = await self.perception.extract_candidates(page)
                print(f"✓ 提取 {len(candidates)} 个可交互元素")
                logger.debug("候选元素:\n%s", self.perception.summarize(candidates))
                if not candidates:
                    print("❌ 页面上没有可交互元素")
                    await controller.clear()
                else:
                    provisional = self.provisional(self.scorer.score(goal, candidates))
                    if provisional:
                        await controller.highlight(provisional.target, overlay_label(provisional))

                    resolution = await self.resolve(
                        goal,
                        candidates,
                        history=self.memory.recent(),
                        origin=page.url,
                        checker=controller.resolves,
                    )
                    print(f"状态: {resolution.status}")
                    primary = resolution.primary
                    if primary and primary.target:
                        await controller.highlight(primary.target, overlay_label(primary))
                        print(f"建议: [{primary.target}] {primary.label} ({round(primary.confidence * 100)}%)")
                        for alt in resolution.alternates[1:]:
                            print(f"  备选: [{alt.target}] {alt.label}")
                    else:
                        await controller.clear()
                    if primary:
                        self.memory.record(page.url, primary)

                answer = await loop.run_in_executor(None, input, "完成操作后按回车继续，输入 q 退出: ")
                if answer.strip().lower() == "q":
                    break

            await browser.close()
            print(self.memory.format_history())
            print(f"\n✓ 引导结束（共 {len(self.memory.steps)} 步）")
