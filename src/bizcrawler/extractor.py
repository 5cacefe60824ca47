import logging
from typing import List

logger = logging.getLogger(__name__)

# Collects trimmed text of nodes whose parent element is laid out and not hidden
VISIBLE_TEXT_SCRIPT = """() => {
    const root = document.body || document.documentElement;
    if (!root) return [];
    const walker = document.createTreeWalker(root, NodeFilter.SHOW_TEXT, {
        acceptNode: (node) => {
            const element = node.parentElement;
            if (!element || element.offsetHeight <= 0) return NodeFilter.FILTER_REJECT;
            const style = window.getComputedStyle(element);
            const isVisible = style.display !== 'none' &&
                              style.visibility !== 'hidden' &&
                              style.opacity !== '0';
            return isVisible ? NodeFilter.FILTER_ACCEPT : NodeFilter.FILTER_REJECT;
        }
    });
    const texts = [];
    let node;
    while ((node = walker.nextNode())) {
        const trimmed = (node.textContent || '').trim();
        if (trimmed) texts.push(trimmed);
    }
    return texts;
}"""


class TextExtractor:
    """Visible text of a rendered page, in document order."""

    async def extract(self, page) -> str:
        texts: List[str] = await page.evaluate(VISIBLE_TEXT_SCRIPT) or []
        text = " ".join(t.strip() for t in texts if t and t.strip())
        if not text:
            logger.warning(f"No visible text found on {page.url}")
        return text
