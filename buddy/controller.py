"""执行模块：在实时页面上确认元素存在并绘制高亮"""

import logging
from playwright.async_api import Page
from .perception import UID_ATTR

logger = logging.getLogger(__name__)

OVERLAY_ID = "__bb_overlay_root"

HIGHLIGHT_JS = """
([uidAttr, targetId, label, overlayId]) => {
    const el = document.querySelector(`[${uidAttr}="${CSS.escape(targetId)}"]`);
    if (!el) return false;
    document.getElementById(overlayId)?.remove();

    const r = el.getBoundingClientRect();
    const x = r.left + window.scrollX, y = r.top + window.scrollY;
    const root = document.createElement('div');
    root.id = overlayId;
    Object.assign(root.style, { position: 'absolute', left: '0px', top: '0px', pointerEvents: 'none', zIndex: '2147483647' });

    const ring = document.createElement('div');
    Object.assign(ring.style, {
        position: 'absolute', left: x + 'px', top: y + 'px', width: r.width + 'px', height: r.height + 'px',
        border: '2px solid #5B9BFF', borderRadius: '6px', boxShadow: '0 0 0 2px rgba(91,155,255,0.2)',
    });
    const tip = document.createElement('div');
    tip.textContent = label;
    Object.assign(tip.style, {
        position: 'absolute', left: Math.max(8, x) + 'px', top: Math.max(0, y - 28) + 'px',
        background: 'rgba(17,25,40,0.9)', color: '#fff', padding: '4px 6px', borderRadius: '4px',
        font: '12px/16px system-ui, -apple-system, Segoe UI, Roboto, sans-serif',
    });
    root.appendChild(ring);
    root.appendChild(tip);
    document.documentElement.appendChild(root);
    return true;
}
"""


class Controller:
    """执行模块：实时存在性检查 + 高亮"""

    def __init__(self, page: Page):
        self.page = page

    def _locator(self, target_id: str):
        return self.page.locator(f"[{UID_ATTR}=\"{target_id}\"]")

    async def resolves(self, target_id: str) -> bool:
        """元素此刻是否仍在页面上且可见"""
        try:
            locator = self._locator(target_id)
            if await locator.count() == 0:
                return False
            return await locator.first.is_visible()
        except Exception as e:
            logger.warning("检查元素 %s 失败: %s", target_id, e)
            return False

    async def highlight(self, target_id: str, label: str) -> bool:
        try:
            return bool(await self.page.evaluate(HIGHLIGHT_JS, [UID_ATTR, target_id, label, OVERLAY_ID]))
        except Exception as e:
            logger.warning("高亮元素 %s 失败: %s", target_id, e)
            return False

    async def clear(self) -> None:
        try:
            await self.page.evaluate(f"() => document.getElementById('{OVERLAY_ID}')?.remove()")
        except Exception as e:
            logger.debug("清除高亮失败: %s", e)
