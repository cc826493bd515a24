import json
import threading
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from sitegen.llm_client import ProviderFacade
from sitegen.models import RawOutput, RetryPolicy, WebsiteSpec
from sitegen.orchestrator import GenerationOrchestrator
from sitegen.progress import ProgressStore
from sitegen.providers import ProviderClient
from sitegen.storage import InMemoryWebsiteStore

Reply = Union[str, BaseException]


class FakeProvider(ProviderClient):
    """Scripted provider: a handler picks the reply per prompt, else replies are served in order."""

    name = "fake"

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        handler: Optional[Callable[[str, Dict[str, Any]], Reply]] = None,
        model: str = "fake-model",
    ):
        super().__init__(model, timeout=1.0)
        self.replies = list(replies or [])
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self._calls_lock = threading.Lock()

    def check_reachable(self) -> bool:
        return True

    def list_models(self) -> List[str]:
        return [self.model, "other-model"]

    def generate(self, prompt: str, params: Optional[Dict[str, Any]] = None) -> RawOutput:
        params = dict(params or {})
        with self._calls_lock:
            self.calls.append({"prompt": prompt, "params": params})
            if self.handler is not None:
                reply = self.handler(prompt, params)
            elif len(self.replies) > 1:
                reply = self.replies.pop(0)
            elif self.replies:
                reply = self.replies[0]
            else:
                raise AssertionError("FakeProvider has no scripted reply")
        if isinstance(reply, BaseException):
            raise reply
        return RawOutput(text=reply, model=self.model)


def header_json() -> str:
    return json.dumps(
        {
            "content": '<header class="site-header"><nav class="navbar"><a class="navbar-brand" href="/">Acme</a></nav></header>',
            "css": "header { background: #0d6efd; } .navbar-brand { color: #fff; }",
        }
    )


def footer_json() -> str:
    return json.dumps(
        {
            "content": '<footer class="site-footer"><p>&copy; Acme</p></footer>',
            "css": "footer { padding: 2rem 0; } p { margin: 0; }",
        }
    )


def page_json(page_name: str) -> str:
    slug = page_name.lower()
    return json.dumps(
        {
            "sections": [
                {
                    "sectionReference": f"section-hero-{slug}",
                    "type": "hero",
                    "content": f'<section id="section-hero-{slug}"><h1>{page_name}</h1></section>',
                    "css": f"#section-hero-{slug} {{ padding: 4rem 0; }} h1 {{ font-size: 3rem; }}",
                },
                {
                    "sectionReference": f"section-info-{slug}",
                    "type": "info",
                    "content": f'<section id="section-info-{slug}"><p>About {page_name}.</p></section>',
                    "css": f"#section-info-{slug} p {{ color: #333; }}",
                },
            ]
        }
    )


def well_formed_handler(prompt: str, params: Dict[str, Any]) -> str:
    if "creating the header" in prompt:
        return header_json()
    if "creating the footer" in prompt:
        return footer_json()
    first_line = prompt.splitlines()[0]
    page_name = first_line.split("creating the ", 1)[1].split(" page", 1)[0]
    return page_json(page_name)


@pytest.fixture
def spec() -> WebsiteSpec:
    return WebsiteSpec(
        website_id="site-1",
        business_name="Acme Plumbing",
        business_category="Home services",
        business_description="Fast, friendly plumbing for the whole city.",
        primary_color="#3366cc",
        pages=["Home", "Contact"],
        email="hello@acme.test",
        phone="555-0100",
    )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(attempts=3, initial_delay=0.01, max_delay=0.05, multiplier=2.0)


@pytest.fixture
def store() -> InMemoryWebsiteStore:
    return InMemoryWebsiteStore()


@pytest.fixture
def make_orchestrator(store, fast_policy, no_sleep):
    created: List[GenerationOrchestrator] = []

    def _make(provider: ProviderClient, **kwargs: Any) -> GenerationOrchestrator:
        kwargs.setdefault("store", store)
        kwargs.setdefault("progress", ProgressStore())
        kwargs.setdefault("policy", fast_policy)
        kwargs.setdefault("sleep", no_sleep)
        orch = GenerationOrchestrator(ProviderFacade(provider), **kwargs)
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        orch.shutdown(wait=True)
