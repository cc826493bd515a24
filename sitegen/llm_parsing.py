from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator
from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

MAX_EXTRACTED_SECTIONS = 10

PLACEHOLDER_MARKUP = (
    '<div class="sitegen-placeholder"><p>This content is being prepared. Please check back soon.</p></div>'
)
PLACEHOLDER_CSS = ".sitegen-placeholder { padding: 2rem 0; text-align: center; }"

_MARKUP_KEYS = ("content", "markup", "html")
_CSS_KEYS = ("css", "stylesheet", "styles")
_REF_KEYS = ("sectionReference", "section_reference", "reference", "id")

_HEADER_FOOTER_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "anyOf": [{"required": [k], "properties": {k: {"type": "string", "minLength": 1}}} for k in _MARKUP_KEYS],
    "properties": {k: {"type": "string"} for k in _CSS_KEYS},
}

_PAGE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["sections"],
    "properties": {
        "sections": {
            "type": "array",
            "minItems": 1,
            "items": _HEADER_FOOTER_SCHEMA,
        }
    },
}

_HEADER_FOOTER_VALIDATOR = Draft202012Validator(_HEADER_FOOTER_SCHEMA)
_PAGE_VALIDATOR = Draft202012Validator(_PAGE_SCHEMA)

_REASONING_BLOCK_RE = re.compile(r"<(think|thinking|reasoning)>[\s\S]*?</\1>", re.IGNORECASE)
_REASONING_OPEN_RE = re.compile(r"^\s*<(?:think|thinking|reasoning)>[\s\S]*?(?=[{\[]|\Z)", re.IGNORECASE)

_STRING_BODY = r'"((?:[^"\\]|\\.)*)"'
_MARKUP_FIELD_RE = re.compile(r'"(?:%s)"\s*:\s*%s' % ("|".join(_MARKUP_KEYS), _STRING_BODY), re.DOTALL)
_CSS_FIELD_RE = re.compile(r'"(?:%s)"\s*:\s*%s' % ("|".join(_CSS_KEYS), _STRING_BODY), re.DOTALL)
_REF_FIELD_RE = re.compile(r'"(?:%s)"\s*:\s*%s' % ("|".join(_REF_KEYS), _STRING_BODY), re.DOTALL)
_TYPE_FIELD_RE = re.compile(r'"type"\s*:\s*%s' % _STRING_BODY, re.DOTALL)
_ESCAPE_RE = re.compile(r'\\(u[0-9a-fA-F]{4}|["\\/bfnrt])')
_ESCAPES = {'"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f", "n": "\n", "r": "\r", "t": "\t"}

VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr",
}
_OPEN_TAG_RE = re.compile(r"<([a-zA-Z][a-zA-Z0-9-]*)\b[^<>]*?(/?)>")
_CLOSE_TAG_RE = re.compile(r"</([a-zA-Z][a-zA-Z0-9-]*)\s*>")
_UNTERMINATED_TAG_RE = re.compile(r"<[a-zA-Z/!][^<>]*$")
_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*")


class ParsedSection(BaseModel):
    reference: str = ""
    markup: str
    stylesheet: str = ""
    section_type: str = ""


class ParsedPayload(BaseModel):
    """Structured fields recovered from one provider response."""

    markup: str = ""
    stylesheet: str = ""
    sections: List[ParsedSection] = Field(default_factory=list)
    placeholder: bool = False
    method: str = "strict"


def strip_reasoning(text: str) -> str:
    """Drop think-aloud blocks some models echo before the payload."""
    t = _REASONING_BLOCK_RE.sub("", text or "")
    t = _REASONING_OPEN_RE.sub("", t)
    return t.strip()


def _strip_fences(text: str) -> str:
    t = (text or "").strip()
    m = re.search(r"```(?:json)?\s*([\s\S]*?)```", t, re.IGNORECASE)
    if m:
        return m.group(1).strip()
    if t.startswith("```"):
        # Fence opened but never closed
        return _FENCE_OPEN_RE.sub("", t, count=1).strip()
    return t


def _balanced_json_slice(s: str) -> Optional[str]:
    in_str = False
    esc = False
    depth = 0
    start_idx = -1
    for i, ch in enumerate(s):
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start_idx != -1:
                return s[start_idx : i + 1]
    return None


def _json_from_text(text: str) -> Any:
    """Load the first JSON value found in `text`; raise ValueError when none parses."""
    t = _strip_fences(text)
    candidates: List[str] = []
    if t.startswith("["):
        candidates.append(t)
    sliced = _balanced_json_slice(t)
    if sliced:
        candidates.append(sliced)
    if t.startswith("{") and t not in candidates:
        candidates.append(t)
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            s = re.sub(r",\s*([}\]])", r"\1", candidate)
            s = s.replace("“", '"').replace("”", '"').replace("’", "'")
            try:
                return json.loads(s)
            except ValueError:
                continue
    raise ValueError("No JSON object found")


def _repair_json_loose(text: str) -> str:
    """Close an open string and any open brackets/braces, in nesting order."""
    t = (text or "").rstrip()
    stack: List[str] = []
    in_str = False
    esc = False
    for ch in t:
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()
    if esc:
        t = t[:-1]
    if in_str:
        t += '"'
    t = re.sub(r",\s*$", "", t)
    return t + "".join(reversed(stack))


def _first_str(obj: Dict[str, Any], keys: Tuple[str, ...]) -> str:
    for k in keys:
        v = obj.get(k)
        if isinstance(v, str) and v.strip():
            return v
    return ""


def _section_from_obj(obj: Dict[str, Any]) -> ParsedSection:
    return ParsedSection(
        reference=_first_str(obj, _REF_KEYS),
        markup=_first_str(obj, _MARKUP_KEYS),
        stylesheet=_first_str(obj, _CSS_KEYS),
        section_type=_first_str(obj, ("type", "sectionType", "section_type")),
    )


def parse_strict(text: str, kind: str = "header") -> ParsedPayload:
    """Parse and schema-check a header/footer or page payload; raise ValueError on any mismatch."""
    data = _json_from_text(text)
    if kind == "page":
        if isinstance(data, list):
            data = {"sections": data}
        elif isinstance(data, dict) and "sections" not in data and _first_str(data, _MARKUP_KEYS):
            data = {"sections": [data]}
        errors = sorted(_PAGE_VALIDATOR.iter_errors(data), key=lambda e: list(e.path))
        if errors:
            raise ValueError(f"page payload invalid: {errors[0].message}")
        sections = [_section_from_obj(s) for s in data["sections"][:MAX_EXTRACTED_SECTIONS]]
        return ParsedPayload(sections=sections, method="strict")
    errors = list(_HEADER_FOOTER_VALIDATOR.iter_errors(data))
    if errors:
        raise ValueError(f"{kind} payload invalid: {errors[0].message}")
    return ParsedPayload(
        markup=_first_str(data, _MARKUP_KEYS),
        stylesheet=_first_str(data, _CSS_KEYS),
        method="strict",
    )


def unescape_json_string(s: str) -> str:
    def _sub(m: "re.Match[str]") -> str:
        code = m.group(1)
        if code.startswith("u"):
            return chr(int(code[1:], 16))
        return _ESCAPES[code]

    return _ESCAPE_RE.sub(_sub, s or "")


def extract_fields(text: str) -> Optional[Tuple[str, str]]:
    """Regex-extract the first markup field and first stylesheet field; None if no markup."""
    m = _MARKUP_FIELD_RE.search(text or "")
    if not m:
        return None
    markup = unescape_json_string(m.group(1))
    if not markup.strip():
        return None
    c = _CSS_FIELD_RE.search(text)
    css = unescape_json_string(c.group(1)) if c else ""
    return markup, css


def extract_sections(text: str) -> List[ParsedSection]:
    """Regex-extract up to MAX_EXTRACTED_SECTIONS sections from a malformed sections payload."""
    t = text or ""
    markups = []
    for m in _MARKUP_FIELD_RE.finditer(t):
        markups.append(m)
        if len(markups) >= MAX_EXTRACTED_SECTIONS:
            break
    sections: List[ParsedSection] = []
    used_css: set = set()
    for i, m in enumerate(markups):
        lo = markups[i - 1].end() if i > 0 else 0
        hi = markups[i + 1].start() if i + 1 < len(markups) else len(t)
        css = ""
        for c in _CSS_FIELD_RE.finditer(t, m.end(), hi):
            css = unescape_json_string(c.group(1))
            used_css.add(c.start())
            break
        if not css:
            for c in _CSS_FIELD_RE.finditer(t, lo, m.start()):
                if c.start() not in used_css:
                    css = unescape_json_string(c.group(1))
                    used_css.add(c.start())
                    break
        ref = ""
        for r in _REF_FIELD_RE.finditer(t, lo, m.start()):
            ref = unescape_json_string(r.group(1))
        if not ref:
            r = _REF_FIELD_RE.search(t, m.end(), hi)
            if r:
                ref = unescape_json_string(r.group(1))
        stype = ""
        for ty in _TYPE_FIELD_RE.finditer(t, lo, m.start()):
            stype = unescape_json_string(ty.group(1))
        markup = unescape_json_string(m.group(1))
        if markup.strip():
            sections.append(ParsedSection(reference=ref, markup=markup, stylesheet=css, section_type=stype))
    return sections


def placeholder_payload(kind: str = "header") -> ParsedPayload:
    if kind == "page":
        return ParsedPayload(
            sections=[
                ParsedSection(
                    reference="section-placeholder",
                    markup=PLACEHOLDER_MARKUP,
                    stylesheet=PLACEHOLDER_CSS,
                    section_type="placeholder",
                )
            ],
            placeholder=True,
            method="placeholder",
        )
    return ParsedPayload(markup=PLACEHOLDER_MARKUP, stylesheet=PLACEHOLDER_CSS, placeholder=True, method="placeholder")


def _process(text: str, kind: str) -> ParsedPayload:
    t = strip_reasoning(text)
    try:
        return parse_strict(t, kind)
    except ValueError as exc:
        log.debug("strict parse failed for %s: %s", kind, exc)

    if kind == "page":
        sections = extract_sections(t)
        if sections:
            return ParsedPayload(sections=sections, method="extracted")
    else:
        fields = extract_fields(t)
        if fields:
            return ParsedPayload(markup=fields[0], stylesheet=fields[1], method="extracted")

    body = _strip_fences(t)
    if body.startswith("{") or body.startswith("["):
        try:
            repaired = parse_strict(_repair_json_loose(body), kind)
            repaired.method = "repaired"
            return repaired
        except ValueError as exc:
            log.debug("loose repair failed for %s: %s", kind, exc)

    log.warning("No usable %s payload in provider output (%d chars); using placeholder", kind, len(text or ""))
    return placeholder_payload(kind)


def process_header_footer(text: str) -> ParsedPayload:
    return _process(text, "header")


def process_page(text: str) -> ParsedPayload:
    return _process(text, "page")


def count_tags(markup: str) -> Tuple[int, int]:
    """Return (opening, closing) tag counts, ignoring void and self-closing tags."""
    opens = 0
    for name, self_closing in _OPEN_TAG_RE.findall(markup or ""):
        if self_closing or name.lower() in VOID_TAGS:
            continue
        opens += 1
    closes = len(_CLOSE_TAG_RE.findall(markup or ""))
    return opens, closes


def _json_unbalanced(text: str) -> bool:
    depth = 0
    in_str = False
    esc = False
    for ch in text:
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
    return in_str or depth != 0


def _truncation_signature(text: str) -> bool:
    lines = [ln for ln in text.rstrip().splitlines() if ln.strip()]
    if not lines:
        return True
    last = lines[-1].rstrip()
    if last.endswith("...") or last.endswith("…"):
        return True
    if _UNTERMINATED_TAG_RE.search(last):
        return True
    if last.endswith("{") or last.endswith("["):
        return True
    unescaped_quotes = len(re.findall(r'(?<!\\)"', last))
    return unescaped_quotes % 2 == 1


def is_incomplete(text: str) -> bool:
    """True when provider text looks cut off mid-payload."""
    raw = strip_reasoning(text)
    if not raw.strip():
        return True
    if raw.lstrip().startswith("```") and raw.count("```") < 2:
        return True
    t = _strip_fences(raw)
    if t.startswith("{") or t.startswith("["):
        if _json_unbalanced(t):
            return True
    else:
        opens, closes = count_tags(t)
        if opens - closes > 2:
            return True
    return _truncation_signature(t)
