"""Top-level generation pipeline.

A run walks header, footer and every page in order, each stage going through
the retry controller with the fallback synthesizer as its floor, then saves
everything through the store. Generation problems never fail a run; only the
store can do that.
"""
from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Callable, Dict, List, Optional, Sequence

from sitegen import config
from sitegen.css_fixer import scope_class_for, scope_css
from sitegen.errors import IncompleteOutput, MalformedOutput, PersistenceFailure
from sitegen.fallback import fallback_footer, fallback_header, fallback_page, fallback_section, tag_image_candidates
from sitegen.html_fixer import ensure_scope, fix_markup
from sitegen.llm_client import ProviderFacade
from sitegen.llm_parsing import process_header_footer, process_page
from sitegen.llm_prompts import build_footer_prompt, build_header_prompt, build_page_prompt
from sitegen.models import (
    GenerationProgress,
    GenerationRequest,
    HeaderFooterArtifact,
    PageArtifact,
    RawOutput,
    RetryPolicy,
    RunHandle,
    RunState,
    Section,
    SiteArtifacts,
    Stage,
    WebsiteSpec,
    page_slug,
)
from sitegen.progress import ProgressStore
from sitegen.retry import run_with_retry
from sitegen.storage import WebsiteStore

log = logging.getLogger(__name__)

HEADER_SCOPE = "sg-site-header"
FOOTER_SCOPE = "sg-site-footer"
HEADER_ROOTS = ("header", ".site-header", "nav.navbar")
FOOTER_ROOTS = ("footer", ".site-footer")

_REF_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]+")


class ActiveRunRegistry:
    """At most one active run per website id. Claiming is an atomic check-then-insert."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, str] = {}
        self._cancel: Dict[str, threading.Event] = {}

    def claim(self, website_id: str, run_id: str) -> Optional[str]:
        """Register `run_id` for `website_id`. Returns the run already holding it, or None."""
        with self._lock:
            existing = self._runs.get(website_id)
            if existing is not None:
                return existing
            self._runs[website_id] = run_id
            self._cancel[run_id] = threading.Event()
            return None

    def release(self, website_id: str, run_id: str) -> None:
        with self._lock:
            if self._runs.get(website_id) == run_id:
                del self._runs[website_id]
            self._cancel.pop(run_id, None)

    def active_run(self, website_id: str) -> Optional[str]:
        with self._lock:
            return self._runs.get(website_id)

    def cancel(self, website_id: str) -> bool:
        with self._lock:
            run_id = self._runs.get(website_id)
            event = self._cancel.get(run_id) if run_id else None
        if event is None:
            return False
        event.set()
        return True

    def cancel_event(self, run_id: str) -> Optional[threading.Event]:
        with self._lock:
            return self._cancel.get(run_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)


class RunCancelled(Exception):
    pass


class RunAlreadyActive(Exception):
    def __init__(self, website_id: str, run_id: str):
        super().__init__(f"website {website_id} already has active run {run_id}")
        self.website_id = website_id
        self.run_id = run_id


def _clean_reference(value: str) -> str:
    return _REF_UNSAFE_RE.sub("-", (value or "").strip()).strip("-")


def _require_complete(raw: RawOutput, label: str) -> None:
    if raw.incomplete:
        raise IncompleteOutput(f"{label} output still truncated after completion pass ({raw.length} chars)")


def build_header_footer(raw: RawOutput, scope_class: str, roots: Sequence[str] = ()) -> HeaderFooterArtifact:
    """Parse, fix and scope a header or footer payload. Placeholder output is rejected."""
    payload = process_header_footer(raw.text)
    if payload.placeholder:
        raise MalformedOutput("no markup field in provider output")
    markup = ensure_scope(fix_markup(payload.markup), scope_class)
    return HeaderFooterArtifact(markup=markup, stylesheet=scope_css(payload.stylesheet, scope_class, roots))


def build_section(raw: RawOutput, reference: str, section_type: str) -> Section:
    payload = process_header_footer(raw.text)
    if payload.placeholder:
        raise MalformedOutput("no markup field in provider output")
    scope = scope_class_for(reference)
    return Section(
        reference=reference,
        markup=ensure_scope(fix_markup(payload.markup), scope),
        stylesheet=scope_css(payload.stylesheet, scope, (f"#{reference}",)),
        section_type=section_type or "default",
    )


def build_page(raw: RawOutput, page_name: str) -> PageArtifact:
    payload = process_page(raw.text)
    if payload.placeholder or not payload.sections:
        raise MalformedOutput("no sections in provider output")
    slug = page_slug(page_name).strip("/") or "home"
    seen = set()
    sections: List[Section] = []
    for i, parsed in enumerate(payload.sections, 1):
        ref = _clean_reference(parsed.reference) or f"section-{slug}-{i}"
        if ref in seen:
            ref = f"{ref}-{i}"
        seen.add(ref)
        scope = scope_class_for(ref)
        sections.append(
            Section(
                reference=ref,
                markup=ensure_scope(fix_markup(parsed.markup), scope),
                stylesheet=scope_css(parsed.stylesheet, scope, (f"#{ref}",)),
                section_type=parsed.section_type or "default",
            )
        )
    return PageArtifact(name=page_name, slug=page_slug(page_name), sections=sections)


class GenerationOrchestrator:
    def __init__(
        self,
        facade: ProviderFacade,
        store: WebsiteStore,
        progress=None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: Optional[int] = None,
        registry: Optional[ActiveRunRegistry] = None,
        on_progress: Optional[Callable[[GenerationProgress], None]] = None,
    ):
        self.facade = facade
        self.store = store
        self.progress = progress if progress is not None else ProgressStore()
        self.policy = policy or config.retry_policy()
        self.registry = registry or ActiveRunRegistry()
        self.on_progress = on_progress
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or config.GENERATION_WORKERS, thread_name_prefix="sitegen-run"
        )
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    # -- stages --------------------------------------------------------------

    def _stage(self, request: GenerationRequest, prompt: str, timeout_key: str, build, fallback):
        label = request.label

        def attempt():
            raw = self.facade.generate(prompt, "json", timeout=config.timeout_for(timeout_key))
            log.debug("%s: %d chars from %s in %.2fs", label, raw.length, raw.model or "provider", raw.elapsed)
            _require_complete(raw, label)
            return build(raw)

        outcome = run_with_retry(attempt, self.policy, fallback, sleep=self._sleep, label=label)
        if outcome.used_fallback:
            log.warning("%s: using fallback content after %d attempt(s)", label, outcome.attempts)
        return outcome.value

    def generate_header(self, spec: WebsiteSpec) -> HeaderFooterArtifact:
        return self._stage(
            GenerationRequest(stage=Stage.HEADER, spec=spec),
            build_header_prompt(spec),
            "header",
            lambda raw: build_header_footer(raw, HEADER_SCOPE, HEADER_ROOTS),
            lambda: fallback_header(spec),
        )

    def generate_footer(self, spec: WebsiteSpec) -> HeaderFooterArtifact:
        return self._stage(
            GenerationRequest(stage=Stage.FOOTER, spec=spec),
            build_footer_prompt(spec),
            "footer",
            lambda raw: build_header_footer(raw, FOOTER_SCOPE, FOOTER_ROOTS),
            lambda: fallback_footer(spec),
        )

    def generate_page(self, spec: WebsiteSpec, page_name: str, custom_instructions: str = "") -> PageArtifact:
        page = self._stage(
            GenerationRequest(stage=Stage.PAGE, spec=spec, page_name=page_name),
            build_page_prompt(spec, page_name, custom_instructions),
            "page",
            lambda raw: build_page(raw, page_name),
            lambda: fallback_page(spec, page_name),
        )
        return self._tag_images(page)

    def generate_section(
        self, spec: WebsiteSpec, page_name: str, section_type: str, prompt: str, reference: str
    ) -> Section:
        return self._stage(
            GenerationRequest(stage=Stage.PAGE, spec=spec, page_name=page_name),
            prompt,
            "section",
            lambda raw: build_section(raw, reference, section_type),
            lambda: fallback_section(spec, page_name, section_type, reference=reference),
        )

    def _tag_images(self, page: PageArtifact) -> PageArtifact:
        try:
            return page.model_copy(update={"sections": tag_image_candidates(page.sections)})
        except Exception:
            log.exception("image candidate tagging failed for page '%s'; keeping sections as generated", page.name)
            return page

    # -- runs ----------------------------------------------------------------

    def start_generation(self, spec: WebsiteSpec) -> RunHandle:
        run_id = uuid.uuid4().hex
        existing = self.registry.claim(spec.website_id, run_id)
        if existing is not None:
            log.info("website %s already has active run %s; not starting another", spec.website_id, existing)
            return RunHandle(run_id=existing, website_id=spec.website_id, already_active=True)
        try:
            self.progress.create(run_id, spec.website_id)
            future = self._executor.submit(self.run, spec, run_id)
        except Exception:
            self.registry.release(spec.website_id, run_id)
            raise
        with self._futures_lock:
            self._futures[run_id] = future
        future.add_done_callback(lambda _f: self._forget(run_id))
        log.info("run %s started for website %s (%d page(s))", run_id, spec.website_id, len(spec.pages))
        return RunHandle(run_id=run_id, website_id=spec.website_id)

    def _forget(self, run_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(run_id, None)

    def run(self, spec: WebsiteSpec, run_id: Optional[str] = None) -> Optional[SiteArtifacts]:
        """Run the whole pipeline on the calling thread.

        Claims the website in the registry unless `start_generation` already
        did so for `run_id`. Returns the saved artifacts, or None if the run
        was cancelled. Raises RunAlreadyActive when another run holds the
        website and PersistenceFailure when the store rejects a write.
        """
        run_id = run_id or uuid.uuid4().hex
        existing = self.registry.claim(spec.website_id, run_id)
        if existing is not None and existing != run_id:
            raise RunAlreadyActive(spec.website_id, existing)
        try:
            return self._run(spec, run_id)
        finally:
            self.registry.release(spec.website_id, run_id)

    def _run(self, spec: WebsiteSpec, run_id: str) -> Optional[SiteArtifacts]:
        try:
            if self.progress.get(run_id) is None:
                self.progress.create(run_id, spec.website_id)
        except Exception:
            log.exception("could not create progress record for run %s", run_id)
        cancel = self.registry.cancel_event(run_id) or threading.Event()
        started = time.time()
        try:
            site = self._pipeline(spec, run_id, cancel)
        except RunCancelled:
            log.info("run %s cancelled", run_id)
            self._update(run_id, state=RunState.CANCELLED, message="Generation cancelled")
            return None
        except PersistenceFailure as exc:
            log.error("run %s failed while saving: %s", run_id, exc)
            self._update(run_id, state=RunState.FAILED, message="Saving the website failed", error=str(exc))
            raise
        except Exception as exc:
            log.exception("run %s failed", run_id)
            self._update(run_id, state=RunState.FAILED, message="Generation failed", error=str(exc))
            raise
        log.info(
            "run %s completed in %.1fs (fallback: %s)",
            run_id,
            time.time() - started,
            ", ".join(site.fallback_stages) or "none",
        )
        return site

    def _pipeline(self, spec: WebsiteSpec, run_id: str, cancel: threading.Event) -> SiteArtifacts:
        self._transition(run_id, cancel, state=RunState.GENERATING_HEADER, percent=5, message="Generating header")
        header = self.generate_header(spec)

        self._transition(
            run_id,
            cancel,
            state=RunState.GENERATING_FOOTER,
            percent=10,
            message=_outcome_message("header", header.fallback),
            fallback_stage="header" if header.fallback else None,
        )
        footer = self.generate_footer(spec)

        total = len(spec.pages)
        self._transition(
            run_id,
            cancel,
            state=RunState.GENERATING_PAGE,
            percent=20,
            message=_outcome_message("footer", footer.fallback),
            fallback_stage="footer" if footer.fallback else None,
        )
        pages: List[PageArtifact] = []
        for i, name in enumerate(spec.pages):
            self._transition(
                run_id,
                cancel,
                state=RunState.GENERATING_PAGE,
                percent=20 + i * 70 // total,
                message=f"Generating page {name} ({i + 1}/{total})",
            )
            page = self.generate_page(spec, name)
            pages.append(page)
            self._update(
                run_id,
                percent=20 + (i + 1) * 70 // total,
                message=_outcome_message(f"page {name}", page.fallback),
                fallback_stage=f"page '{name}'" if page.fallback else None,
            )

        self._transition(run_id, cancel, state=RunState.SAVING, percent=90, message="Saving website")
        site = SiteArtifacts(website_id=spec.website_id, header=header, footer=footer, pages=pages)
        self._save(site)

        done = "Website generated"
        if site.fallback_stages:
            done += " (fallback content for " + ", ".join(site.fallback_stages) + ")"
        self._update(run_id, state=RunState.COMPLETED, percent=100, message=done)
        return site

    def _save(self, site: SiteArtifacts) -> None:
        try:
            self.store.save_header(site.website_id, site.header)
            self.store.save_footer(site.website_id, site.footer)
            for page in site.pages:
                self.store.save_page(site.website_id, page.name, page.sections)
        except PersistenceFailure:
            raise
        except Exception as exc:
            raise PersistenceFailure(f"saving website {site.website_id} failed: {exc}") from exc

    def _transition(self, run_id: str, cancel: threading.Event, **changes) -> None:
        if cancel.is_set():
            raise RunCancelled(run_id)
        self._update(run_id, **changes)

    def _update(self, run_id: str, **changes) -> Optional[GenerationProgress]:
        try:
            record = self.progress.update(run_id, **changes)
        except KeyError:
            log.warning("progress record for run %s disappeared", run_id)
            return None
        except Exception:
            log.exception("progress update for run %s failed; generation continues", run_id)
            return None
        log.info("run %s: %s %d%% %s", run_id, record.state.value, record.percent, record.message)
        if self.on_progress is not None:
            try:
                self.on_progress(record)
            except Exception:
                log.exception("on_progress callback failed for run %s", run_id)
        return record

    # -- queries -------------------------------------------------------------

    def get_progress(self, run_id: str) -> Optional[GenerationProgress]:
        return self.progress.get(run_id)

    def cancel(self, website_id: str) -> bool:
        cancelled = self.registry.cancel(website_id)
        if cancelled:
            log.info("cancellation requested for website %s", website_id)
        return cancelled

    def wait(self, run_id: str, timeout: Optional[float] = None) -> Optional[GenerationProgress]:
        """Block until the run finishes (or `timeout` passes) and return its progress."""
        with self._futures_lock:
            future = self._futures.get(run_id)
        if future is not None:
            wait_futures([future], timeout=timeout)
        return self.get_progress(run_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _outcome_message(stage: str, used_fallback: bool) -> str:
    if used_fallback:
        return f"Using fallback content for {stage}"
    return f"Generated {stage}"
