from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup, Tag

from sitegen.llm_parsing import count_tags

log = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "https://via.placeholder.com/800x400"
PLACEHOLDER_ALT = "Placeholder Image"

_BROKEN_NAV_ITEM_RE = re.compile(r'<li\s+class="nav-item(?:\s+[\w-]+)*(?=\s*<)')
_UNCLOSED_NAV_ITEM_RE = re.compile(r'(<li\s+class="nav-item[^"<>]*")(?=\s*<)')
_NAVBAR_COLLAPSE_RE = re.compile(r'(<div[^>]*navbar-collapse[\s\S]*?)(</nav>)', re.IGNORECASE)


def _repair_nav_patterns(markup: str) -> str:
    # <li class="nav-item<a ...  ->  <li class="nav-item"><a ...
    s = _BROKEN_NAV_ITEM_RE.sub(lambda m: m.group(0) + '">', markup)
    s = _UNCLOSED_NAV_ITEM_RE.sub(r"\1>", s)

    def _close_collapse(m: "re.Match[str]") -> str:
        segment = m.group(1)
        missing = len(re.findall(r"<div\b", segment, re.IGNORECASE)) - len(
            re.findall(r"</div\s*>", segment, re.IGNORECASE)
        )
        if missing > 0:
            return segment + "</div>" * missing + m.group(2)
        return m.group(0)

    return _NAVBAR_COLLAPSE_RE.sub(_close_collapse, s)


def fix_markup(markup: str) -> str:
    """Patch common structural defects in generated markup. Idempotent."""
    if not markup or not markup.strip():
        return markup or ""
    text = _repair_nav_patterns(markup)
    soup = BeautifulSoup(text, "html.parser")

    for img in soup.find_all("img"):
        if not (img.get("src") or "").strip():
            img["src"] = PLACEHOLDER_IMAGE
        if img.get("alt") is None:
            img["alt"] = PLACEHOLDER_ALT

    for a in soup.find_all("a"):
        if not (a.get("href") or "").strip():
            a["href"] = "#"

    # Serializing closes anything the parser left open and drops stray end tags
    fixed = str(soup)
    if fixed != markup:
        log.debug("markup fixer changed %d -> %d chars", len(markup), len(fixed))
    return fixed


def ensure_scope(markup: str, scope_class: str) -> str:
    """Put `scope_class` on the outermost element, wrapping bare content in a div."""
    if not scope_class:
        return markup
    soup = BeautifulSoup(markup or "", "html.parser")
    top = [node for node in soup.contents if isinstance(node, Tag)]
    stray_text = any(not isinstance(node, Tag) and str(node).strip() for node in soup.contents)
    if len(top) == 1 and not stray_text:
        classes = top[0].get("class") or []
        if scope_class not in classes:
            top[0]["class"] = list(classes) + [scope_class]
        return str(soup)
    wrapper = soup.new_tag("div")
    wrapper["class"] = [scope_class]
    for node in list(soup.contents):
        wrapper.append(node.extract())
    soup.append(wrapper)
    return str(soup)


def is_balanced(markup: str) -> bool:
    opens, closes = count_tags(markup)
    return opens == closes
