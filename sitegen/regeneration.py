from __future__ import annotations

import logging
import uuid
from typing import List

from sitegen.errors import PersistenceFailure
from sitegen.fallback import section_reference
from sitegen.llm_prompts import build_section_prompt
from sitegen.models import PageArtifact, Section, WebsiteSpec
from sitegen.orchestrator import GenerationOrchestrator

log = logging.getLogger(__name__)


class PartialRegenerator:
    """Rebuild one page or one section of an existing site.

    Uses the orchestrator's stage machinery, so the same retry and fallback
    rules apply as during a full run. Every result is saved before it is
    returned.
    """

    def __init__(self, orchestrator: GenerationOrchestrator):
        self.orchestrator = orchestrator

    @property
    def store(self):
        return self.orchestrator.store

    def regenerate_page(self, spec: WebsiteSpec, page_name: str, custom_instructions: str = "") -> PageArtifact:
        page = self.orchestrator.generate_page(spec, page_name, custom_instructions)
        self._save_page(spec.website_id, page_name, page.sections)
        log.info("page '%s' of %s regenerated (fallback=%s)", page_name, spec.website_id, page.fallback)
        return page

    def regenerate_section(
        self, spec: WebsiteSpec, page_name: str, section: Section, custom_instructions: str = ""
    ) -> Section:
        """Replace `section` in place, keeping its reference. Appended if the page does not have it yet."""
        prompt = build_section_prompt(
            spec, page_name, section.section_type, custom_instructions, is_regeneration=True
        )
        fresh = self.orchestrator.generate_section(
            spec, page_name, section.section_type, prompt, reference=section.reference
        )
        fresh = fresh.model_copy(update={"image_candidate": section.image_candidate})
        self._put_section(spec.website_id, page_name, fresh)
        return fresh

    def generate_new_section(
        self, spec: WebsiteSpec, page_name: str, section_type: str, custom_instructions: str = ""
    ) -> Section:
        reference = f"{section_reference(section_type, page_name)}-{uuid.uuid4().hex[:8]}"
        prompt = build_section_prompt(spec, page_name, section_type, custom_instructions)
        section = self.orchestrator.generate_section(spec, page_name, section_type, prompt, reference=reference)
        self._put_section(spec.website_id, page_name, section)
        return section

    def _put_section(self, website_id: str, page_name: str, section: Section) -> None:
        try:
            sections = self.store.load_sections(website_id, page_name)
        except PersistenceFailure:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"loading page '{page_name}' failed: {exc}") from exc
        for i, existing in enumerate(sections):
            if existing.reference == section.reference:
                sections[i] = section
                break
        else:
            sections.append(section)
        self._save_page(website_id, page_name, sections)
        log.info("section %s of page '%s' saved for %s", section.reference, page_name, website_id)

    def _save_page(self, website_id: str, page_name: str, sections: List[Section]) -> None:
        try:
            self.store.save_page(website_id, page_name, sections)
        except PersistenceFailure:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"saving page '{page_name}' failed: {exc}") from exc
