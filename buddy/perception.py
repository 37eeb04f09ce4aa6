"""感知模块：从页面提取可交互的候选元素"""

from typing import List
from playwright.async_api import Page
from .models import Candidate

UID_ATTR = "data-bb-uid"

EXTRACT_JS = """
(uidAttr) => {
    window.__bbUidCounter = window.__bbUidCounter || 1;

    // 同一元素重复扫描时复用已分配的 id
    const assignUid = (el) => {
        if (!el.getAttribute(uidAttr)) {
            el.setAttribute(uidAttr, `__bb_uid_${window.__bbUidCounter++}`);
        }
        return el.getAttribute(uidAttr);
    };

    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        if (style.display === 'none') return false;
        if (style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        if (rect.width < 1 || rect.height < 1) return false;
        for (let cur = el; cur; cur = cur.parentElement) {
            if (cur.hasAttribute('hidden') || cur.getAttribute('aria-hidden') === 'true') return false;
        }
        return true;
    };

    const squash = (s) => (s || '').replace(/\\s+/g, ' ').trim();
    const textShort = (el) => {
        const t = squash(el.textContent);
        return t.length > 120 ? t.slice(0, 117) + '…' : t;
    };

    const labelsFor = (el) => {
        const labels = [];
        if (el.labels) {
            for (const l of el.labels) { const t = squash(l.textContent); if (t) labels.push(t); }
        }
        const ids = el.getAttribute('aria-labelledby');
        if (ids) {
            for (const id of ids.split(/\\s+/)) {
                const lab = document.getElementById(id);
                const t = lab ? squash(lab.textContent) : '';
                if (t) labels.push(t);
            }
        }
        return labels.slice(0, 3);
    };

    // 优先级：aria-label > aria-labelledby > <label> > alt/title > 文本
    const accessibleName = (el) => {
        const aria = (el.getAttribute('aria-label') || '').trim();
        if (aria) return aria;
        const labels = labelsFor(el);
        if (labels.length) return labels[0];
        const alt = (el.getAttribute('alt') || '').trim();
        if (alt) return alt;
        const title = (el.getAttribute('title') || '').trim();
        if (title) return title;
        return textShort(el);
    };

    const ancestorText = (el) => {
        const pieces = [];
        let cur = el.parentElement;
        while (cur && pieces.join(' ').length < 140) {
            const t = (cur.getAttribute('aria-label') || '').trim();
            if (t) pieces.push(t);
            const heading = cur.querySelector('h1,h2,h3,h4,h5,h6');
            const ht = heading ? squash(heading.textContent) : '';
            if (ht && !pieces.includes(ht)) pieces.push(ht);
            cur = cur.parentElement;
        }
        const s = pieces.join(' • ');
        return s.length > 160 ? s.slice(0, 157) + '…' : s;
    };

    const domPath = (el) => {
        const parts = [];
        for (let cur = el; cur && cur.nodeType === 1 && parts.length < 8; cur = cur.parentElement) {
            let part = cur.tagName.toLowerCase();
            if (parts.length === 0 && cur.classList.length) {
                part += '.' + Array.from(cur.classList).slice(0, 2).join('.');
            }
            const siblings = cur.parentElement ? Array.from(cur.parentElement.children) : [];
            const sameTag = siblings.filter((s) => s.tagName === cur.tagName);
            if (sameTag.length > 1) part += `:nth-of-type(${sameTag.indexOf(cur) + 1})`;
            parts.unshift(part);
        }
        return parts.join(' > ');
    };

    const inferRole = (el) => {
        const role = el.getAttribute('role');
        if (role) return role;
        return { a: 'link', button: 'button', input: 'textbox', select: 'combobox', textarea: 'textbox' }[el.tagName.toLowerCase()] || '';
    };

    const controlType = (el) => {
        const tag = el.tagName.toLowerCase();
        const type = (el.getAttribute('type') || '').toLowerCase();
        const role = inferRole(el);
        if (tag === 'input') {
            if (type === 'submit' || role === 'button') return 'submit';
            if (['button', 'reset', 'checkbox', 'radio', 'file'].includes(type)) return type;
            if (['email', 'password', 'search', 'url', 'tel', 'number'].includes(type)) return type;
            return 'text';
        }
        if (['button', 'select', 'textarea'].includes(tag)) return tag;
        if (tag === 'a') return 'link';
        if (['tab', 'menuitem', 'link', 'button'].includes(role)) return role;
        return tag;
    };

    const isClickable = (el) => {
        const tag = el.tagName.toLowerCase();
        if (tag === 'a' || tag === 'button') return true;
        if (['button', 'link', 'tab', 'menuitem'].includes(el.getAttribute('role'))) return true;
        if (typeof el.onclick === 'function') return true;
        const rect = el.getBoundingClientRect();
        return window.getComputedStyle(el).cursor === 'pointer' && rect.width > 8 && rect.height > 8;
    };

    const selector = [
        'a[href]', 'button', 'input:not([type="hidden"])', 'select', 'textarea',
        '[role="button"]', '[role="link"]', '[role="tab"]', '[role="menuitem"]',
    ].join(',');
    const locale = document.documentElement.lang || navigator.language || 'en';

    const elements = [];
    for (const el of document.querySelectorAll(selector)) {
        if (!isVisible(el)) continue;
        const tag = el.tagName.toLowerCase();
        const clickable = isClickable(el);
        if (!clickable && !['input', 'textarea', 'select'].includes(tag)) continue;

        const rect = el.getBoundingClientRect();
        elements.push({
            id: assignUid(el),
            tag,
            role: inferRole(el),
            controlType: controlType(el),
            type: el.getAttribute('type') || '',
            text: textShort(el),
            accName: accessibleName(el),
            ariaLabel: el.getAttribute('aria-label') || '',
            labels: labelsFor(el),
            ancestorTextSample: ancestorText(el),
            domPath: domPath(el),
            bounds: {
                x: Math.round(rect.left + window.scrollX),
                y: Math.round(rect.top + window.scrollY),
                w: Math.round(rect.width),
                h: Math.round(rect.height),
            },
            visible: true,
            clickable,
            disabled: el.hasAttribute('disabled') || el.getAttribute('aria-disabled') === 'true',
            locale,
            href: el.getAttribute('href') || '',
            nameAttr: el.getAttribute('name') || '',
            placeholder: el.getAttribute('placeholder') || '',
        });
    }
    return elements;
}
"""


class Perception:
    """
    感知模块：提取可见且可交互的元素。

    每个元素第一次被扫描时写入 data-bb-uid，之后的扫描复用同一个 id；
    页面跳转后 id 不保证稳定。
    """

    async def extract_candidates(self, page: Page) -> List[Candidate]:
        items = await page.evaluate(EXTRACT_JS, UID_ATTR)
        return [Candidate.from_dict(item) for item in items]

    def summarize(self, candidates: List[Candidate]) -> str:
        """生成候选元素的文本摘要，便于在控制台查看"""
        lines = []
        for c in candidates:
            disabled_str = " [DISABLED]" if c.disabled else ""
            context_str = f" ({c.ancestor_text})" if c.ancestor_text else ""
            lines.append(f"[{c.id}] {c.tag}: \"{c.display_label or '(无文本)'}\"{disabled_str}{context_str}")
        return "\n".join(lines)
