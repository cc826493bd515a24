import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from sitegen.errors import PersistenceFailure
from sitegen.llm_client import ProviderFacade
from sitegen.models import GenerationProgress, PageArtifact, RunHandle, Section, WebsiteSpec
from sitegen.orchestrator import GenerationOrchestrator
from sitegen.progress import create_progress_store
from sitegen.regeneration import PartialRegenerator
from sitegen.storage import FileWebsiteStore


if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

facade = ProviderFacade()
store = FileWebsiteStore()
progress_store = create_progress_store()
orchestrator = GenerationOrchestrator(facade, store, progress_store)
regenerator = PartialRegenerator(orchestrator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("sitegen starting (provider=%s, model=%s)", facade.client.name, facade.client.model)
    yield
    orchestrator.shutdown(wait=False)


app = FastAPI(lifespan=lifespan)

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


class ProviderRequest(BaseModel):
    provider: str = Field(..., min_length=1)


class ModelRequest(BaseModel):
    model: str = Field(..., min_length=1)


class PageRegenerateRequest(BaseModel):
    website: WebsiteSpec
    page_name: str = Field(..., min_length=1)
    custom_instructions: str = ""


class SectionRegenerateRequest(BaseModel):
    website: WebsiteSpec
    page_name: str = Field(..., min_length=1)
    section: Section
    custom_instructions: str = ""


class NewSectionRequest(BaseModel):
    website: WebsiteSpec
    page_name: str = Field(..., min_length=1)
    section_type: str = Field(..., min_length=1)
    custom_instructions: str = ""


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return facade.status()


@app.get("/llm/probe")
def llm_probe_endpoint() -> Dict[str, Any]:
    return facade.probe()


@app.get("/llm/models")
def llm_models_endpoint() -> Dict[str, List[str]]:
    return {"models": facade.available_models()}


@app.post("/llm/provider")
def set_provider_endpoint(req: ProviderRequest) -> Dict[str, Any]:
    try:
        facade.set_provider(req.provider)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return facade.status()


@app.post("/llm/model")
def set_model_endpoint(req: ModelRequest) -> Dict[str, Any]:
    try:
        facade.set_model(req.model)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return facade.status()


@app.post("/generate", response_model=RunHandle)
def generate_endpoint(spec: WebsiteSpec) -> RunHandle:
    """Start a run for the website. A run already in flight for the same id is reported, not duplicated."""
    return orchestrator.start_generation(spec)


@app.get("/generate/{run_id}/progress", response_model=GenerationProgress)
def progress_endpoint(run_id: str) -> GenerationProgress:
    record = orchestrator.get_progress(run_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"unknown run {run_id}")
    return record


@app.post("/generate/{website_id}/cancel")
def cancel_endpoint(website_id: str) -> Dict[str, Any]:
    return {"website_id": website_id, "cancelled": orchestrator.cancel(website_id)}


@app.post("/pages/regenerate", response_model=PageArtifact)
def regenerate_page_endpoint(req: PageRegenerateRequest) -> PageArtifact:
    try:
        return regenerator.regenerate_page(req.website, req.page_name, req.custom_instructions)
    except PersistenceFailure as exc:
        log.error("page regeneration could not be saved: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/sections/regenerate", response_model=Section)
def regenerate_section_endpoint(req: SectionRegenerateRequest) -> Section:
    try:
        return regenerator.regenerate_section(req.website, req.page_name, req.section, req.custom_instructions)
    except PersistenceFailure as exc:
        log.error("section regeneration could not be saved: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/sections/new", response_model=Section)
def new_section_endpoint(req: NewSectionRequest) -> Section:
    try:
        return regenerator.generate_new_section(req.website, req.page_name, req.section_type, req.custom_instructions)
    except PersistenceFailure as exc:
        log.error("new section could not be saved: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
