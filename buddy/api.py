"""
Button Buddy HTTP 接口

/rank        目标 + 候选 -> 一个建议（LLM 排序，带超时兜底和缓存）
/site-hints  origin + 目标 -> 站点路径提示
/resolve     目标 + 候选 + 历史 -> 对账后的最终建议
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .core import ButtonBuddy
from .errors import InputError
from .models import MAX_HISTORY, Candidate, SiteHint, Step

logger = logging.getLogger(__name__)

SERVICE_NAME = "button-buddy"

router = APIRouter()


class RankRequest(BaseModel):
    """Request model for /rank"""
    model_config = ConfigDict(populate_by_name=True)

    goal: Optional[str] = None
    candidates: List[Dict[str, Any]] = Field(default_factory=list)
    site_hints: Optional[Any] = Field(default=None, alias="siteHints")


class SiteHintsRequest(BaseModel):
    """Request model for /site-hints"""
    origin: Optional[str] = None
    goal: Optional[str] = None


class ResolveRequest(BaseModel):
    """Request model for /resolve"""
    goal: Optional[str] = None
    candidates: List[Dict[str, Any]] = Field(default_factory=list)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    origin: Optional[str] = None


def _buddy(request: Request) -> ButtonBuddy:
    return request.app.state.buddy


def _candidates(raw: List[Dict[str, Any]]) -> List[Candidate]:
    try:
        return [Candidate.from_dict(item) for item in raw]
    except (KeyError, TypeError, AttributeError) as e:
        raise InputError(f"Malformed candidate: {e}")


def _site_hints(raw: Any) -> List[SiteHint]:
    # 兼容 {hints: [...]} 与直接传列表两种形式
    items = raw.get("hints", []) if isinstance(raw, dict) else raw
    hints = []
    try:
        for item in items or []:
            if isinstance(item, dict) and item.get("url"):
                hints.append(SiteHint(
                    url=str(item["url"]),
                    label=str(item.get("label", "")),
                    score=float(item.get("score") or 0),
                ))
    except (TypeError, ValueError) as e:
        raise InputError(f"Malformed site hint: {e}")
    return hints


def _history(raw: List[Dict[str, Any]]) -> List[Step]:
    try:
        return [Step.from_dict(step) for step in raw[-MAX_HISTORY:]]
    except (TypeError, ValueError, AttributeError) as e:
        raise InputError(f"Malformed history step: {e}")


@router.get("/")
async def root():
    """Root endpoint"""
    return {"ok": True, "service": SERVICE_NAME, "endpoints": ["/rank", "/site-hints", "/resolve"]}


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": SERVICE_NAME}


@router.post("/rank")
async def rank(body: RankRequest, request: Request):
    if not body.goal or not body.goal.strip() or not body.candidates:
        raise InputError("Missing goal or candidates")
    buddy = _buddy(request)
    suggestion = await buddy.rank(body.goal, _candidates(body.candidates), _site_hints(body.site_hints))
    return suggestion.to_dict()


@router.post("/site-hints")
async def site_hints(body: SiteHintsRequest, request: Request):
    provider = _buddy(request).hint_provider
    if provider.enabled and (not body.origin or not body.goal):
        raise InputError("Missing origin or goal")
    result = await provider.hints(body.origin or "", body.goal or "")
    return {"origin": body.origin, **result.to_dict()}


@router.post("/resolve")
async def resolve(body: ResolveRequest, request: Request):
    buddy = _buddy(request)
    resolution = await buddy.resolve(
        body.goal, _candidates(body.candidates), history=_history(body.history), origin=body.origin,
    )
    return resolution.to_dict()


async def input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=400, content={"error": exc.message})


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal error"})


def create_app(buddy: Optional[ButtonBuddy] = None) -> FastAPI:
    app = FastAPI(
        title="Button Buddy",
        description="Resolve a natural-language goal to one actionable element on a web page",
        version="0.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.buddy = buddy or ButtonBuddy.from_settings()
    app.add_exception_handler(InputError, input_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    app.include_router(router)
    return app
