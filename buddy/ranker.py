"""排序模块：调用 LLM 在候选元素中选出最能推进目标的一个"""

import asyncio
import json
import logging
import re
import time
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional

from openai import AsyncOpenAI

from .cache import TTLCache, rank_cache_key
from .models import (
    MAX_ALTERNATES,
    MAX_HISTORY,
    SOURCE_LLM,
    SOURCE_LOCAL,
    SOURCE_TIMEOUT,
    Candidate,
    SiteHint,
    Step,
    Suggestion,
)
from .scorer import MAX_RANKED

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 8000
TIMEOUT_CONFIDENCE = 0.35
GENERIC_CONFIDENCE = 0.3
UNVALIDATED_CONFIDENCE_CAP = 0.2

_FALLBACK_KEYWORDS = re.compile(r"email|subscription|billing|settings|account|password", re.IGNORECASE)

SYSTEM_PROMPT = (
    "你是一个谨慎的 UI 动作排序器。\n"
    "给定用户目标和网页上一小组可交互控件，选出最直接推进目标的那一个控件。\n"
    "优先选择能立刻推进任务的具体控件，而不是泛泛的导航。保持保守。\n"
    "【约束】：\n"
    "1. 只能从 candidates 中选择一个元素，elementId 必须原样取自候选 id，不得编造或改写。\n"
    "2. 标签包含与目标相关的名词（email, billing, subscription, subscriptions, users, password, security）"
    "优先于泛词（change, more, menu, help, docs）。\n"
    "3. 如果只有泛词，选择最具体的路径（settings/account/profile）并降低 confidence。\n"
    "你必须且只能输出 JSON 字符串，格式如下：\n"
    "{\n"
    "  \"elementId\": \"候选 id\",\n"
    "  \"reason\": \"一句简短理由\",\n"
    "  \"confidence\": 0-100,\n"
    "  \"alternates\": [\"最多 3 个候选 id，按偏好排序\"]\n"
    "}"
)


def _balanced_fragments(text: str) -> Iterator[str]:
    """按括号配对依次找出文本中的 {...} 片段，跳过字符串内的括号"""
    for start, ch in enumerate(text):
        if ch != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for end in range(start, len(text)):
            c = text[end]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
            elif c == '"':
                in_string = True
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    yield text[start:end + 1]
                    break


def parse_payload(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """先整体解析 JSON，失败后再尝试内嵌的 JSON 片段"""
    text = (text or "").strip()
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass
    for fragment in _balanced_fragments(text):
        try:
            data = json.loads(fragment)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def _discard_result(task: "asyncio.Task") -> None:
    # 超时后被丢弃的调用：取走结果，避免未读取的异常告警
    if not task.cancelled():
        task.exception()


class Ranker:
    """排序模块：LLM 排序 + 硬超时 + 本地兜底"""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        cache: Optional[TTLCache] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        confidence_scale: float = 100.0,
        temperature: float = 0.15,
    ):
        self.client = client
        self.model = model
        self.cache = cache
        self.timeout_ms = timeout_ms
        self.confidence_scale = confidence_scale
        self.temperature = temperature

    def build_messages(
        self,
        goal: str,
        candidates: List[Candidate],
        site_hints: Optional[List[SiteHint]] = None,
        history: Optional[List[Step]] = None,
    ) -> List[Dict[str, str]]:
        system_prompt = SYSTEM_PROMPT
        if site_hints:
            hints_text = "\n".join(f"- {h.url} ({h.label}, score: {h.score:.2f})" for h in site_hints)
            system_prompt += (
                "\n\n站点上下文：通过站点分析发现了以下相关路径：\n"
                f"{hints_text}\n"
                "选择时请参考这些路径，指向或靠近这些路径的元素可能更相关。"
            )

        prior = [step.to_dict() for step in (history or [])[-MAX_HISTORY:]]
        compact = json.dumps([c.to_compact() for c in candidates], ensure_ascii=False)[:120000]
        user_prompt = (
            f"用户目标：{goal}\n\n"
            f"历史步骤（最近的在最后）：\n{json.dumps(prior, ensure_ascii=False)}\n\n"
            f"候选元素（JSON）：\n{compact}\n\n"
            "请只输出一个紧凑的 JSON 对象。"
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

    async def _ask(self, messages: List[Dict[str, str]]) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            response_format={"type": "json_object"},
            messages=messages,
        )
        return (response.choices[0].message.content or "").strip()

    async def rank(
        self,
        goal: str,
        candidates: List[Candidate],
        site_hints: Optional[List[SiteHint]] = None,
        history: Optional[List[Step]] = None,
    ) -> Suggestion:
        """
        根据目标 + 候选 + 站点提示，返回一个建议。

        LLM 调用与计时器同时启动，先完成者决定结果；
        超时的调用会被取消，其结果不会再写入缓存。
        """
        sent = candidates[:MAX_RANKED]
        key = rank_cache_key(goal, sent) if self.cache is not None else None
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("排序缓存命中: %s", key)
                return replace(cached, cache_hit=True)

        messages = self.build_messages(goal, sent, site_hints, history)
        started = time.monotonic()
        oracle = asyncio.ensure_future(self._ask(messages))
        timer = asyncio.ensure_future(asyncio.sleep(self.timeout_ms / 1000))
        try:
            done, _ = await asyncio.wait({oracle, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            oracle.cancel()
            raise
        finally:
            timer.cancel()
        latency_ms = int((time.monotonic() - started) * 1000)

        if oracle not in done:
            oracle.cancel()
            oracle.add_done_callback(_discard_result)
            logger.warning("LLM 排序超时 (%d ms)，使用本地兜底", self.timeout_ms)
            suggestion = self.timeout_fallback(sent, latency_ms)
            self._store(key, suggestion)
            return suggestion

        try:
            raw = oracle.result()
        except Exception as e:
            logger.error("LLM 调用失败: %s", e)
            return self.generic_fallback(latency_ms, "Ranking service error; offering a generic next step.")

        payload = parse_payload(raw)
        if payload is None:
            logger.warning("LLM 输出无法解析: %.200s", raw)
            return self.generic_fallback(latency_ms, "Fallback: could not parse the ranking response.")

        suggestion = self.to_suggestion(payload, sent, latency_ms)
        if suggestion.target is not None:
            self._store(key, suggestion)
        return suggestion

    def _store(self, key: Optional[str], suggestion: Suggestion) -> None:
        if key is not None:
            self.cache.put(key, suggestion)

    def _coerce_confidence(self, raw: Any) -> float:
        if raw is None or isinstance(raw, bool):
            return 0.5
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return 0.5
        if self.confidence_scale and self.confidence_scale != 1:
            value = value / self.confidence_scale
        return value

    def to_suggestion(self, payload: Dict[str, Any], sent: List[Candidate], latency_ms: int) -> Suggestion:
        """只接受确实发送过的候选 id"""
        by_id = {c.id: c for c in sent}
        raw_id = payload.get("elementId", payload.get("element_id"))
        target = str(raw_id) if raw_id is not None else None
        confidence = self._coerce_confidence(payload.get("confidence"))

        if target is None or target not in by_id:
            logger.warning("LLM 返回了未发送过的元素 id: %r", raw_id)
            return Suggestion(
                target=None,
                label="No validated match",
                confidence=min(confidence, UNVALIDATED_CONFIDENCE_CAP),
                explanation="Model suggestion did not match any element on this page.",
                source=SOURCE_LLM,
                latency_ms=latency_ms,
            )

        raw_alternates = payload.get("alternates")
        alternates = []
        if isinstance(raw_alternates, list):
            for alt in raw_alternates:
                alt_id = str(alt)
                if alt_id in by_id and alt_id != target and alt_id not in alternates:
                    alternates.append(alt_id)
        return Suggestion(
            target=target,
            label=by_id[target].display_label or "Open",
            confidence=confidence,
            explanation=str(payload.get("reason") or "Chosen as best match to goal"),
            source=SOURCE_LLM,
            alternates=alternates[:MAX_ALTERNATES],
            latency_ms=latency_ms,
        )

    def timeout_fallback(self, sent: List[Candidate], latency_ms: int) -> Suggestion:
        pick = next(
            (c for c in sent if _FALLBACK_KEYWORDS.search(f"{c.text} {c.acc_name} {c.aria_label}")),
            sent[0] if sent else None,
        )
        return Suggestion(
            target=pick.id if pick else None,
            label=(pick.display_label or "Open") if pick else "Open the main menu",
            confidence=TIMEOUT_CONFIDENCE,
            explanation="Timed out; offering best local guess",
            source=SOURCE_TIMEOUT,
            latency_ms=latency_ms,
        )

    def generic_fallback(self, latency_ms: int, explanation: str) -> Suggestion:
        return Suggestion(
            target=None,
            label="Open the main menu",
            confidence=GENERIC_CONFIDENCE,
            explanation=explanation,
            source=SOURCE_LOCAL,
            latency_ms=latency_ms,
        )
