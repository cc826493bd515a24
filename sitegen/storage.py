from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from sitegen import config
from sitegen.errors import PersistenceFailure
from sitegen.models import HeaderFooterArtifact, Section

log = logging.getLogger(__name__)


class WebsiteStore(Protocol):
    """Where finished artifacts go. Section regeneration reads a page back before rewriting it."""

    def save_header(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        ...

    def save_footer(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        ...

    def save_page(self, website_id: str, name: str, sections: List[Section]) -> None:
        ...

    def load_sections(self, website_id: str, name: str) -> List[Section]:
        ...


class InMemoryWebsiteStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sites: Dict[str, Dict[str, Any]] = {}

    def _site(self, website_id: str) -> Dict[str, Any]:
        return self.sites.setdefault(website_id, {"header": None, "footer": None, "pages": {}})

    def save_header(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        with self._lock:
            self._site(website_id)["header"] = artifact

    def save_footer(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        with self._lock:
            self._site(website_id)["footer"] = artifact

    def save_page(self, website_id: str, name: str, sections: List[Section]) -> None:
        with self._lock:
            self._site(website_id)["pages"][name] = list(sections)

    def load_sections(self, website_id: str, name: str) -> List[Section]:
        with self._lock:
            site = self.sites.get(website_id) or {}
            return list(site.get("pages", {}).get(name, []))

    def get(self, website_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.sites.get(website_id)


def _safe_name(value: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "-", (value or "").strip().lower()).strip("-") or "page"


class FileWebsiteStore:
    """JSON files under `<root>/<website_id>/`, written via temp file + rename."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or config.OUTPUT_DIR)

    def _write(self, path: Path, payload: Dict[str, Any]) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            tmp.replace(path)
        except OSError as exc:
            raise PersistenceFailure(f"could not write {path}: {exc}") from exc
        log.debug("saved %s", path)

    def save_header(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        self._write(self.root / _safe_name(website_id) / "header.json", artifact.model_dump())

    def save_footer(self, website_id: str, artifact: HeaderFooterArtifact) -> None:
        self._write(self.root / _safe_name(website_id) / "footer.json", artifact.model_dump())

    def save_page(self, website_id: str, name: str, sections: List[Section]) -> None:
        payload = {"name": name, "sections": [s.model_dump() for s in sections]}
        self._write(self.root / _safe_name(website_id) / "pages" / f"{_safe_name(name)}.json", payload)

    def load_sections(self, website_id: str, name: str) -> List[Section]:
        path = self.root / _safe_name(website_id) / "pages" / f"{_safe_name(name)}.json"
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return [Section.model_validate(s) for s in data.get("sections", [])]
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(f"could not read {path}: {exc}") from exc

    def load(self, website_id: str) -> Dict[str, Any]:
        base = self.root / _safe_name(website_id)
        out: Dict[str, Any] = {"header": None, "footer": None, "pages": {}}
        for part in ("header", "footer"):
            p = base / f"{part}.json"
            if p.exists():
                out[part] = json.loads(p.read_text(encoding="utf-8"))
        pages_dir = base / "pages"
        if pages_dir.exists():
            for p in sorted(pages_dir.glob("*.json")):
                data = json.loads(p.read_text(encoding="utf-8"))
                out["pages"][data.get("name", p.stem)] = data.get("sections", [])
        return out
