"""配置：从环境变量（及 .env 文件）读取"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# 加载 .env 文件中的环境变量
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, default))


@dataclass
class Settings:
    """运行参数，阈值与超时均可配置"""
    openai_api_key: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_base_url: Optional[str] = field(default_factory=lambda: os.getenv("OPENAI_BASE_URL") or None)
    model: str = field(default_factory=lambda: os.getenv("BUDDY_MODEL", "gpt-4o-mini"))

    llm_timeout_ms: int = field(default_factory=lambda: _env_int("LLM_TIMEOUT_MS", 8000))
    confidence_threshold: float = field(default_factory=lambda: _env_float("CONFIDENCE_THRESHOLD", 0.55))

    enable_site_hints: bool = field(default_factory=lambda: _env_bool("ENABLE_SITE_HINTS", True))
    rank_cache_ttl_s: float = field(default_factory=lambda: _env_float("RANK_CACHE_TTL_S", 60))
    rank_cache_max: int = field(default_factory=lambda: _env_int("RANK_CACHE_MAX", 500))
    hints_cache_ttl_s: float = field(default_factory=lambda: _env_float("HINTS_CACHE_TTL_S", 30 * 60))
    hint_request_timeout_s: float = field(default_factory=lambda: _env_float("HINT_REQUEST_TIMEOUT_S", 5))

    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 8787))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))
    debug: bool = field(default_factory=lambda: _env_bool("DEBUG", False))
