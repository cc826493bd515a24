"""Deterministic, offline stand-ins for header, footer and page content.

Everything here renders fixed Jinja2 templates from ``sitegen/templates/fallback``
with values from the WebsiteSpec. Nothing touches the network, and for a given
spec and page the output is always the same.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from sitegen.models import HeaderFooterArtifact, PageArtifact, Section, WebsiteSpec, page_slug

log = logging.getLogger(__name__)

_env = Environment(
    loader=PackageLoader("sitegen", "templates/fallback"),
    autoescape=select_autoescape(["html", "xml"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)

PAGE_STRUCTURES: Dict[str, List[Tuple[str, str]]] = {
    "home": [
        ("hero", "Hero Section"),
        ("intro", "Introduction"),
        ("features", "What We Offer"),
        ("testimonials", "Testimonials"),
        ("cta", "Call to Action"),
    ],
    "about": [
        ("story", "Our Story"),
        ("team", "Our Team"),
        ("values", "Our Values"),
        ("cta", "Call to Action"),
    ],
    "services": [
        ("overview", "Services Overview"),
        ("details", "Service Details"),
        ("process", "Our Process"),
        ("pricing", "Pricing"),
        ("cta", "Call to Action"),
    ],
    "contact": [
        ("form", "Contact Form"),
        ("info", "Contact Information"),
        ("map", "Map"),
    ],
    "blog": [
        ("header", "Blog"),
        ("featured", "Featured Posts"),
        ("recent", "Recent Posts"),
    ],
    "default": [
        ("header", "Page Header"),
        ("content", "Main Content"),
        ("cta", "Call to Action"),
    ],
}

_CARD_ITEMS: Dict[str, List[Dict[str, str]]] = {
    "intro": [
        {"icon": "check-circle", "title": "Quality Service", "text": "We provide top quality service to all our clients."},
        {"icon": "users", "title": "Expert Team", "text": "Our experienced team is ready to help you."},
        {"icon": "clock", "title": "Fast Response", "text": "Quick response time to all your needs."},
    ],
    "features": [
        {"icon": "star", "title": "Service One", "text": "A clear description of our first service and how it benefits you."},
        {"icon": "cog", "title": "Service Two", "text": "A clear description of our second service and how it benefits you."},
        {"icon": "heart", "title": "Service Three", "text": "A clear description of our third service and how it benefits you."},
    ],
    "team": [
        {"icon": "user-tie", "title": "Leadership", "text": "Experienced people setting the direction."},
        {"icon": "user-cog", "title": "Specialists", "text": "Hands-on experts in every area we cover."},
        {"icon": "headset", "title": "Support", "text": "Friendly people who answer your questions."},
    ],
    "values": [
        {"icon": "handshake", "title": "Integrity", "text": "We do what we say and say what we do."},
        {"icon": "award", "title": "Quality", "text": "We hold every piece of work to a high standard."},
        {"icon": "smile", "title": "Care", "text": "Our customers are at the centre of every decision."},
    ],
    "process": [
        {"icon": "comments", "title": "1. Consult", "text": "We listen and learn what you need."},
        {"icon": "pencil-ruler", "title": "2. Plan", "text": "We agree a plan that fits your goals."},
        {"icon": "rocket", "title": "3. Deliver", "text": "We deliver and follow up to make sure it works."},
    ],
    "pricing": [
        {"icon": "tag", "title": "Basic", "text": "Essential services for getting started."},
        {"icon": "tags", "title": "Standard", "text": "Our most popular package for growing needs."},
        {"icon": "gem", "title": "Premium", "text": "Full service with priority support."},
    ],
    "posts": [
        {"icon": "newspaper", "title": "Latest News", "text": "Updates and announcements from our team."},
        {"icon": "lightbulb", "title": "Tips and Guides", "text": "Practical advice from our experts."},
        {"icon": "bullhorn", "title": "Stories", "text": "Stories from the people we work with."},
    ],
}

_QUOTES = [
    ("Working with {name} has been an excellent experience. Professional and reliable.", "John Smith", "Happy Customer"),
    ("I highly recommend {name}. Their attention to detail is outstanding.", "Jane Doe", "Satisfied Client"),
    ("The team at {name} exceeded my expectations and delivered on time.", "Michael Johnson", "Repeat Customer"),
]

_COLOR_RE = re.compile(r"^(#[0-9a-fA-F]{3}|#[0-9a-fA-F]{6}|[a-zA-Z]{3,20}|rgba?\([0-9.,\s%]+\))$")
_FONT_UNSAFE_RE = re.compile(r"[;{}<>]")


def page_type(page_name: str) -> str:
    name = (page_name or "").strip().lower()
    if name == "home":
        return "home"
    for needle, kind in (("about", "about"), ("service", "services"), ("contact", "contact"), ("blog", "blog")):
        if needle in name:
            return kind
    return "default"


def page_sections(page_name: str) -> List[Tuple[str, str]]:
    return PAGE_STRUCTURES.get(page_type(page_name), PAGE_STRUCTURES["default"])


def section_reference(section_type: str, page_name: str) -> str:
    slug = page_slug(page_name).strip("/") or "home"
    kind = re.sub(r"[^a-z0-9-]+", "-", (section_type or "content").lower()).strip("-") or "content"
    return f"section-{kind}-{slug}"


def darken_color(color: str, percent: float) -> str:
    """Darken a hex colour by `percent`; non-hex values come back unchanged."""
    raw = (color or "").strip().lstrip("#")
    if len(raw) == 3:
        raw = "".join(ch * 2 for ch in raw)
    if len(raw) != 6:
        return color
    try:
        r, g, b = (int(raw[i : i + 2], 16) for i in (0, 2, 4))
    except ValueError:
        return color
    factor = 1 - max(0.0, min(float(percent), 100.0)) / 100
    return "#{:02x}{:02x}{:02x}".format(int(r * factor), int(g * factor), int(b * factor))


def _safe_color(value: str, default: str) -> str:
    v = (value or "").strip()
    return v if _COLOR_RE.match(v) else default


def _theme(spec: WebsiteSpec) -> Dict[str, str]:
    primary = _safe_color(spec.primary_color, "#0d6efd")
    font = _FONT_UNSAFE_RE.sub("", spec.font_family or "").strip() or "Arial, sans-serif"
    return {
        "primary": primary,
        "primary_dark": darken_color(primary, 10),
        "secondary": _safe_color(spec.secondary_color, "#6c757d"),
        "font": font,
    }


def _contact_href(spec: WebsiteSpec) -> str:
    for name in spec.pages:
        if page_type(name) == "contact":
            return page_slug(name)
    return "#"


def _social(spec: WebsiteSpec) -> List[Dict[str, str]]:
    links = spec.social_links
    items = []
    if links.facebook:
        items.append({"href": f"https://facebook.com/{links.facebook}", "icon": "facebook", "label": "Facebook"})
    if links.twitter:
        items.append({"href": f"https://twitter.com/{links.twitter}", "icon": "twitter", "label": "Twitter"})
    if links.instagram:
        items.append({"href": f"https://instagram.com/{links.instagram}", "icon": "instagram", "label": "Instagram"})
    if links.linkedin:
        items.append({"href": f"https://linkedin.com/company/{links.linkedin}", "icon": "linkedin", "label": "LinkedIn"})
    return items


def fallback_header(spec: WebsiteSpec) -> HeaderFooterArtifact:
    nav = [
        {"name": name, "href": page_slug(name), "active": page_slug(name) == "/"}
        for name in spec.pages
    ]
    theme = _theme(spec)
    return HeaderFooterArtifact(
        markup=_env.get_template("header.html").render(spec=spec, nav=nav).strip(),
        stylesheet=_env.get_template("header.css").render(**theme).strip(),
        fallback=True,
    )


def fallback_footer(spec: WebsiteSpec) -> HeaderFooterArtifact:
    theme = _theme(spec)
    return HeaderFooterArtifact(
        markup=_env.get_template("footer.html")
        .render(spec=spec, social=_social(spec), year=spec.copyright_year)
        .strip(),
        stylesheet=_env.get_template("footer.css").render(**theme).strip(),
        fallback=True,
    )


def _section_template(section_type: str, page_name: str, spec: WebsiteSpec) -> Tuple[str, Dict[str, Any]]:
    kind = (section_type or "").lower()
    if kind == "hero":
        return "hero.html", {}
    if kind in {"intro", "overview", "story"}:
        return "intro.html", {"items": _CARD_ITEMS["intro"]}
    if kind in {"features", "services", "details", "team", "values", "process", "pricing", "featured", "recent"}:
        items = _CARD_ITEMS.get(kind) or (_CARD_ITEMS["posts"] if kind in {"featured", "recent"} else _CARD_ITEMS["features"])
        return "features.html", {"items": items, "lead": "Discover what we offer to meet your needs."}
    if kind == "testimonials":
        quotes = [
            {"text": text.format(name=spec.business_name), "name": who, "role": role}
            for text, who, role in _QUOTES
        ]
        return "testimonials.html", {"quotes": quotes}
    if kind == "form" and page_type(page_name) == "contact":
        return "contact_form.html", {}
    if kind == "info":
        return "contact_info.html", {}
    if kind == "map" and spec.has_google_map:
        return "map.html", {}
    if kind == "cta":
        return "cta.html", {}
    return "generic.html", {}


def fallback_section(
    spec: WebsiteSpec,
    page_name: str,
    section_type: str,
    title: Optional[str] = None,
    reference: Optional[str] = None,
) -> Section:
    sid = reference or section_reference(section_type, page_name)
    template, extra = _section_template(section_type, page_name, spec)
    context: Dict[str, Any] = {
        "spec": spec,
        "sid": sid,
        "title": title or section_type.replace("-", " ").title(),
        "contact_href": _contact_href(spec),
    }
    context.update(extra)
    theme = _theme(spec)
    markup = _env.get_template(f"sections/{template}").render(**context).strip()
    css = _env.get_template("section.css").render(sid=sid, section_type=section_type, **theme).strip()
    return Section(reference=sid, markup=markup, stylesheet=css, section_type=section_type)


def fallback_page(spec: WebsiteSpec, page_name: str) -> PageArtifact:
    sections = [fallback_section(spec, page_name, kind, title) for kind, title in page_sections(page_name)]
    sections = tag_image_candidates(sections)
    log.info("fallback page '%s' built with %d sections", page_name, len(sections))
    return PageArtifact(name=page_name, slug=page_slug(page_name), sections=sections, fallback=True)


IMAGE_CANDIDATE_TYPES = ("hero", "about", "story", "intro", "overview")
MAX_IMAGE_CANDIDATES = 2


def _image_like(section: Section) -> bool:
    haystack = f"{section.section_type} {section.reference}".lower()
    if any(kind in haystack for kind in IMAGE_CANDIDATE_TYPES):
        return True
    head = section.markup[:300].lower()
    return 'class="hero' in head or "jumbotron" in head


def tag_image_candidates(sections: List[Section], limit: int = MAX_IMAGE_CANDIDATES) -> List[Section]:
    """Mark up to `limit` hero/about-like sections as wanting illustrative imagery. Idempotent."""
    tagged = sum(1 for s in sections if s.image_candidate)
    out: List[Section] = []
    for section in sections:
        if tagged < limit and not section.image_candidate and _image_like(section):
            section = section.model_copy(update={"image_candidate": True})
            tagged += 1
        out.append(section)
    return out
