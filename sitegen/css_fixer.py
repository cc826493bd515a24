from __future__ import annotations

import re
from typing import Iterable, List, Sequence

# At-rules whose bodies hold ordinary style rules
_NESTING_AT_RULES = {"media", "supports", "container", "layer", "document"}
_ROOT_SELECTOR_RE = re.compile(r"^(?:html|body|:root)(?![\w-])", re.IGNORECASE)
_AT_NAME_RE = re.compile(r"@([\w-]+)")


def scope_class_for(reference: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9_-]+", "-", reference or "").strip("-").lower()
    return f"sg-{slug or 'section'}"


def _skip_string(css: str, i: int) -> int:
    quote = css[i]
    i += 1
    while i < len(css):
        if css[i] == "\\":
            i += 2
            continue
        if css[i] == quote:
            return i + 1
        i += 1
    return len(css)


def _skip_comment(css: str, i: int) -> int:
    end = css.find("*/", i + 2)
    return len(css) if end == -1 else end + 2


def _find_block_end(css: str, i: int) -> int:
    """Index of the `}` matching the `{` just before `i`, or -1."""
    depth = 1
    while i < len(css):
        if css.startswith("/*", i):
            i = _skip_comment(css, i)
            continue
        ch = css[i]
        if ch in "\"'":
            i = _skip_string(css, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _split_selectors(prelude: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    start = 0
    i = 0
    while i < len(prelude):
        ch = prelude[i]
        if ch in "\"'":
            i = _skip_string(prelude, i)
            continue
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append(prelude[start:i])
            start = i + 1
        i += 1
    parts.append(prelude[start:])
    return [p.strip() for p in parts if p.strip()]


def _starts_with(selector: str, head: str) -> bool:
    if selector == head:
        return True
    return selector.startswith(head) and not re.match(r"[\w-]", selector[len(head)])


def _scope_selector(selector: str, prefix: str, roots: Sequence[str]) -> str:
    if _starts_with(selector, prefix):
        return selector
    for root in roots:
        if _starts_with(selector, root):
            return prefix + selector[len(root):]
    m = _ROOT_SELECTOR_RE.match(selector)
    if m:
        return prefix + selector[m.end():]
    return f"{prefix} {selector}"


def _scope_block(css: str, prefix: str, roots: Sequence[str]) -> str:
    out: List[str] = []
    i = 0
    n = len(css)
    while i < n:
        j = i
        while j < n and css[j].isspace():
            j += 1
        if j > i:
            out.append(css[i:j])
            i = j
            continue
        if css.startswith("/*", i):
            end = _skip_comment(css, i)
            out.append(css[i:end])
            i = end
            continue

        j = i
        while j < n and css[j] not in "{;}":
            if css[j] in "\"'":
                j = _skip_string(css, j)
                continue
            if css.startswith("/*", j):
                j = _skip_comment(css, j)
                continue
            j += 1
        if j >= n:
            out.append(css[i:])
            break
        if css[j] != "{":
            # @import/@charset statements and stray braces pass through
            out.append(css[i : j + 1])
            i = j + 1
            continue

        prelude = css[i:j]
        end = _find_block_end(css, j + 1)
        if end == -1:
            out.append(css[i:])
            break
        body = css[j + 1 : end]
        if prelude.startswith("@"):
            m = _AT_NAME_RE.match(prelude)
            if m and m.group(1).lower() in _NESTING_AT_RULES:
                out.append(prelude + "{" + _scope_block(body, prefix, roots) + "}")
            else:
                out.append(css[i : end + 1])
        else:
            selectors = [_scope_selector(s, prefix, roots) for s in _split_selectors(prelude)]
            out.append(", ".join(selectors) + " {" + body + "}")
        i = end + 1
    return "".join(out)


def scope_css(css: str, scope_class: str, roots: Iterable[str] = ()) -> str:
    """Prefix bare top-level selectors with `.scope_class` so a section's rules stay local.

    Selectors already starting with the scope class are kept. `html`, `body`,
    `:root` and any of `roots` (the element carrying the scope class, e.g. the
    section's own `#id`) become the scope itself. Keyframes and font-face blocks
    are left alone. Idempotent.
    """
    if not css or not css.strip() or not scope_class:
        return css or ""
    prefix = "." + scope_class.lstrip(".")
    return _scope_block(css, prefix, tuple(r for r in roots if r))
