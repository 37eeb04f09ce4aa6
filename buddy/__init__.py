"""Button Buddy 包

把自然语言目标（"cancel my subscription"）解析为页面上的一个可操作元素。

包含各个模块：
- models: 数据模型
- scorer: 本地打分
- ranker: LLM 排序（超时兜底）
- cache: 短时结果缓存
- hints: 站点路径提示
- reconcile: 对账
- perception / controller: Playwright 页面适配
- memory: 引导会话记忆
- core: 核心流程
"""

from .models import Candidate, Outcome, Resolution, SiteHint, Step, Suggestion
from .scorer import LocalScorer
from .cache import TTLCache
from .ranker import Ranker
from .hints import SiteHintProvider
from .reconcile import Reconciler
from .memory import Memory
from .core import ButtonBuddy

__all__ = [
    "Candidate",
    "Outcome",
    "Resolution",
    "SiteHint",
    "Step",
    "Suggestion",
    "LocalScorer",
    "TTLCache",
    "Ranker",
    "SiteHintProvider",
    "Reconciler",
    "Memory",
    "ButtonBuddy",
]
