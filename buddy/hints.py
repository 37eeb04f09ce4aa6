"""站点提示模块：从 sitemap 或浅层抓取中发现并打分与目标相关的路径"""

import logging
import re
import time
import xml.etree.ElementTree as ET
from typing import List, Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .cache import TTLCache
from .errors import InvalidOriginError
from .models import HintsResult, SiteHint
from .scorer import GOAL_AREAS

logger = logging.getLogger(__name__)

USER_AGENT = "ButtonBuddyBot/0.1"
MAX_SITEMAPS = 2
MAX_SITEMAP_URLS = 200
MAX_CRAWL_LINKS = 80
MAX_HINTS = 10
HINTS_TTL_SECONDS = 30 * 60

RELEVANT_PATH_TOKENS = [
    "settings", "account", "profile", "billing", "subscription", "subscriptions",
    "users", "security", "password", "invoices", "payment", "preferences",
    "admin", "dashboard", "manage", "edit", "update", "change",
]

NAV_SELECTORS = [
    "nav a[href]",
    "header a[href]",
    "footer a[href]",
    ".nav a[href]",
    ".navigation a[href]",
    ".menu a[href]",
    ".header a[href]",
    ".footer a[href]",
]

_SITEMAP_LINE = re.compile(r"^\s*sitemap:\s*(\S+)\s*$", re.IGNORECASE | re.MULTILINE)


def normalize_origin(origin: str) -> str:
    """校验并规范化 origin，非法时在任何网络请求之前抛出"""
    parsed = urlparse((origin or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidOriginError(f"Invalid origin URL: {origin!r}")
    return f"{parsed.scheme}://{parsed.netloc}"


def path_stem(url: str) -> str:
    path = urlparse(url).path.lower()
    return path[:-1] if path.endswith("/") else path


def hint_label(stem: str) -> str:
    last = stem.split("/")[-1]
    words = re.sub(r"[-_]", " ", last)
    return re.sub(r"\b\w", lambda m: m.group().upper(), words) or "Home"


def score_path(stem: str, goal: str) -> float:
    """相关词加分、目标映射加分、路径深度扣分、精确匹配加分；分数不设上限，最低为 0"""
    stem = stem.lower()
    goal_lower = goal.lower()
    score = 0.0
    for token in RELEVANT_PATH_TOKENS:
        if token in stem:
            score += 0.3
    for keyword, tokens in GOAL_AREAS.items():
        if keyword in goal_lower:
            for token in tokens:
                if token in stem:
                    score += 0.4
    score -= stem.count("/") * 0.05
    if stem == "/" + re.sub(r"[^a-z0-9]", "", goal_lower):
        score += 0.5
    return max(0.0, score)


def rank_urls(urls: List[str], goal: str, limit: int = MAX_HINTS) -> List[SiteHint]:
    seen = set()
    hints = []
    for url in urls:
        stem = path_stem(url)
        if stem in seen:
            continue
        seen.add(stem)
        hints.append(SiteHint(url=stem, label=hint_label(stem), score=score_path(stem, goal)))
    hints.sort(key=lambda h: -h.score)
    return hints[:limit]


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


class SiteHintProvider:
    """
    站点提示：robots.txt -> sitemap（最多 2 个，索引最多递归一层），
    没有 sitemap 时退化为首页导航区的浅层抓取。

    每个请求都有独立超时，失败时返回空结果而不是抛出异常。
    """

    def __init__(
        self,
        enabled: bool = True,
        cache: Optional[TTLCache] = None,
        timeout_s: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.enabled = enabled
        self.cache = cache if cache is not None else TTLCache(HINTS_TTL_SECONDS, max_entries=200)
        self.timeout_s = timeout_s
        self.transport = transport

    @property
    def ttl_seconds(self) -> int:
        return int(self.cache.ttl_seconds)

    async def hints(self, origin: str, goal: str) -> HintsResult:
        if not self.enabled:
            return HintsResult(hints=[], source="disabled", fetched_ms=0, ttl_seconds=0)

        origin = normalize_origin(origin)
        key = f"{origin}::{goal.lower()}"
        cached = self.cache.get(key)
        if cached is not None:
            return HintsResult(
                hints=cached.hints,
                source=cached.source,
                fetched_ms=cached.fetched_ms,
                ttl_seconds=cached.ttl_seconds,
                cached=True,
            )

        result = await self._discover(origin, goal)
        self.cache.put(key, result)
        return result

    async def _discover(self, origin: str, goal: str) -> HintsResult:
        started = time.monotonic()
        source = "none"
        urls: List[str] = []
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                sitemaps = await self.fetch_robots(client, origin)
                if sitemaps:
                    source = "sitemap"
                    for sitemap_url in sitemaps[:MAX_SITEMAPS]:
                        urls.extend(await self.parse_sitemap(client, sitemap_url))
                        if len(urls) >= MAX_SITEMAP_URLS:
                            break
                    urls = urls[:MAX_SITEMAP_URLS]
                if not urls:
                    urls = await self.shallow_crawl(client, origin)
                    source = "crawl" if urls else "none"
            hints = rank_urls(urls, goal)
        except Exception as e:
            logger.error("站点提示获取失败 %s: %s", origin, e)
            source = "error"
            hints = []

        fetched_ms = int((time.monotonic() - started) * 1000)
        logger.info("站点提示 %s: %d 条 (source=%s, %d ms)", origin, len(hints), source, fetched_ms)
        return HintsResult(hints=hints, source=source, fetched_ms=fetched_ms, ttl_seconds=self.ttl_seconds)

    async def _get_text(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("请求失败 %s: %s", url, e)
            return None
        if response.status_code != 200:
            logger.debug("请求 %s 返回 %d", url, response.status_code)
            return None
        return response.text

    async def fetch_robots(self, client: httpx.AsyncClient, origin: str) -> Optional[List[str]]:
        """返回 robots.txt 中声明的 sitemap；robots 不可达时返回 None"""
        text = await self._get_text(client, f"{origin}/robots.txt")
        if text is None:
            return None
        return [match.strip() for match in _SITEMAP_LINE.findall(text)]

    async def parse_sitemap(self, client: httpx.AsyncClient, sitemap_url: str, depth: int = 0) -> List[str]:
        text = await self._get_text(client, sitemap_url)
        if not text:
            return []
        try:
            root = ET.fromstring(text.encode("utf-8"))
        except ET.ParseError as e:
            logger.debug("sitemap 解析失败 %s: %s", sitemap_url, e)
            return []

        urls: List[str] = []
        kind = _local_name(root.tag)
        if kind == "urlset":
            for entry in root:
                loc = next((child.text for child in entry if _local_name(child.tag) == "loc"), None)
                if loc and loc.strip():
                    urls.append(loc.strip())
        elif kind == "sitemapindex" and depth == 0:
            children = []
            for entry in root:
                loc = next((child.text for child in entry if _local_name(child.tag) == "loc"), None)
                if loc and loc.strip():
                    children.append(loc.strip())
            for child_url in children[:MAX_SITEMAPS]:
                urls.extend(await self.parse_sitemap(client, child_url, depth=depth + 1))
        return urls[:MAX_SITEMAP_URLS]

    async def shallow_crawl(self, client: httpx.AsyncClient, origin: str) -> List[str]:
        html = await self._get_text(client, origin)
        if not html:
            return []
        soup = BeautifulSoup(html, "html.parser")
        origin_netloc = urlparse(origin).netloc
        links: List[str] = []
        for selector in NAV_SELECTORS:
            for anchor in soup.select(selector):
                href = anchor.get("href")
                if not href:
                    continue
                url = urljoin(origin + "/", href)
                parsed = urlparse(url)
                if parsed.scheme in ("http", "https") and parsed.netloc == origin_netloc and url not in links:
                    links.append(url)
        return links[:MAX_CRAWL_LINKS]
