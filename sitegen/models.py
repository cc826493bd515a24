from __future__ import annotations

import re
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


DEFAULT_PAGES = ["Home", "About", "Services", "Contact"]


def page_slug(name: str) -> str:
    """Home maps to the site root; every other page to its lowercased, dashed name."""
    s = (name or "").strip().lower()
    if s == "home":
        return "/"
    return "/" + re.sub(r"\s+", "-", s)


class SocialLinks(BaseModel):
    model_config = ConfigDict(frozen=True)

    facebook: str = ""
    twitter: str = ""
    instagram: str = ""
    linkedin: str = ""

    def any(self) -> bool:
        return any((self.facebook, self.twitter, self.instagram, self.linkedin))


class WebsiteSpec(BaseModel):
    """Everything the wizard collected about one website. Read-only to the pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    website_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    business_name: str = Field(..., min_length=1)
    business_category: str = ""
    business_description: str = ""
    website_title: str = ""
    website_tagline: str = ""
    website_type: str = "business"
    website_purpose: str = ""
    primary_color: str = "#0d6efd"
    secondary_color: str = "#6c757d"
    font_family: str = "Arial, sans-serif"
    font_style: str = "modern"
    structure: str = "multi-page"
    pages: List[str] = Field(default_factory=lambda: list(DEFAULT_PAGES))
    address: str = ""
    email: str = ""
    phone: str = ""
    social_links: SocialLinks = Field(default_factory=SocialLinks)
    has_newsletter: bool = False
    has_google_map: bool = False
    google_map_url: str = ""
    has_image_slider: bool = False
    copyright_year: int = Field(default_factory=lambda: time.localtime().tm_year, ge=1900)

    @field_validator("pages", mode="before")
    @classmethod
    def _clean_pages(cls, v: Any) -> List[str]:
        if not v:
            return list(DEFAULT_PAGES)
        if isinstance(v, str):
            v = v.split(",")
        names = [str(p).strip() for p in v if str(p).strip()]
        return names or list(DEFAULT_PAGES)

    @field_validator("structure")
    @classmethod
    def _check_structure(cls, v: str) -> str:
        v = (v or "multi-page").strip().lower()
        if v not in {"single-page", "multi-page"}:
            raise ValueError("structure must be 'single-page' or 'multi-page'")
        return v

    @property
    def title(self) -> str:
        return self.website_title or self.business_name


class Stage(str, Enum):
    HEADER = "header"
    FOOTER = "footer"
    PAGE = "page"


class GenerationRequest(BaseModel):
    stage: Stage
    spec: WebsiteSpec
    page_name: Optional[str] = None

    @model_validator(mode="after")
    def _page_needs_name(self) -> "GenerationRequest":
        if self.stage == Stage.PAGE and not self.page_name:
            raise ValueError("page stage requires page_name")
        return self

    @property
    def label(self) -> str:
        if self.stage == Stage.PAGE:
            return f"page '{self.page_name}'"
        return self.stage.value


class RawOutput(BaseModel):
    text: str
    elapsed: float = 0.0
    length: int = 0
    model: str = ""
    incomplete: bool = False

    @model_validator(mode="after")
    def _fill_length(self) -> "RawOutput":
        if not self.length:
            self.length = len(self.text or "")
        return self


class Section(BaseModel):
    reference: str
    markup: str
    stylesheet: str = ""
    section_type: str = "default"
    image_candidate: bool = False


class HeaderFooterArtifact(BaseModel):
    markup: str
    stylesheet: str = ""
    fallback: bool = False


class PageArtifact(BaseModel):
    name: str
    slug: str
    sections: List[Section]
    fallback: bool = False


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempts: int = Field(3, ge=1)
    initial_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(10.0, ge=0)
    multiplier: float = Field(2.0, ge=1.0)


class RunState(str, Enum):
    NOT_STARTED = "not_started"
    GENERATING_HEADER = "generating_header"
    GENERATING_FOOTER = "generating_footer"
    GENERATING_PAGE = "generating_page"
    SAVING = "saving"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED}


class GenerationProgress(BaseModel):
    run_id: str
    website_id: str
    state: RunState = RunState.NOT_STARTED
    percent: int = Field(0, ge=0, le=100)
    message: str = ""
    fallback_stages: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    updated_at: float = Field(default_factory=time.time)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES


class ProviderProfile(BaseModel):
    provider: str
    model: str
    params: Dict[str, Any] = Field(default_factory=dict)
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    quota_exceeded: bool = False


class RunHandle(BaseModel):
    run_id: str
    website_id: str
    already_active: bool = False


class SiteArtifacts(BaseModel):
    website_id: str
    header: HeaderFooterArtifact
    footer: HeaderFooterArtifact
    pages: List[PageArtifact]

    @property
    def fallback_stages(self) -> List[str]:
        stages = [name for name, art in (("header", self.header), ("footer", self.footer)) if art.fallback]
        return stages + [f"page '{p.name}'" for p in self.pages if p.fallback]
