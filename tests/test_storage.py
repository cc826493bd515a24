import json

import pytest

from sitegen.errors import PersistenceFailure
from sitegen.models import HeaderFooterArtifact, Section
from sitegen.storage import FileWebsiteStore, InMemoryWebsiteStore


def _sections():
    return [
        Section(reference="section-hero-about-us", markup="<section>Hi</section>", stylesheet="", section_type="hero"),
        Section(reference="section-cta-about-us", markup="<section>Go</section>", section_type="cta"),
    ]


def test_file_store_writes_json_per_artifact(tmp_path):
    store = FileWebsiteStore(str(tmp_path))
    store.save_header("site-1", HeaderFooterArtifact(markup="<header/>", stylesheet="header{}"))
    store.save_footer("site-1", HeaderFooterArtifact(markup="<footer/>", fallback=True))
    store.save_page("site-1", "About Us", _sections())

    base = tmp_path / "site-1"
    assert json.loads((base / "header.json").read_text())["stylesheet"] == "header{}"
    assert json.loads((base / "footer.json").read_text())["fallback"] is True
    page = json.loads((base / "pages" / "about-us.json").read_text())
    assert page["name"] == "About Us"
    assert [s["reference"] for s in page["sections"]] == ["section-hero-about-us", "section-cta-about-us"]
    assert not list(base.rglob("*.tmp"))


def test_file_store_load_round_trip(tmp_path):
    store = FileWebsiteStore(str(tmp_path))
    store.save_header("site-1", HeaderFooterArtifact(markup="<header/>"))
    store.save_page("site-1", "Home", _sections())
    loaded = store.load("site-1")
    assert loaded["header"]["markup"] == "<header/>"
    assert loaded["footer"] is None
    assert list(loaded["pages"]) == ["Home"]
    assert store.load("missing") == {"header": None, "footer": None, "pages": {}}


def test_file_store_overwrites_pages(tmp_path):
    store = FileWebsiteStore(str(tmp_path))
    store.save_page("site-1", "Home", _sections())
    store.save_page("site-1", "Home", _sections()[:1])
    assert len(store.load("site-1")["pages"]["Home"]) == 1


def test_file_store_wraps_os_errors(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = FileWebsiteStore(str(blocker))
    with pytest.raises(PersistenceFailure):
        store.save_header("site-1", HeaderFooterArtifact(markup="<header/>"))


def test_website_ids_cannot_escape_the_root(tmp_path):
    store = FileWebsiteStore(str(tmp_path / "out"))
    store.save_header("../../etc", HeaderFooterArtifact(markup="<header/>"))
    assert (tmp_path / "out" / "etc" / "header.json").exists()


def test_in_memory_store():
    store = InMemoryWebsiteStore()
    header = HeaderFooterArtifact(markup="<header/>")
    store.save_header("w", header)
    store.save_page("w", "Home", _sections())
    site = store.get("w")
    assert site["header"] == header
    assert site["footer"] is None
    assert [s.reference for s in site["pages"]["Home"]] == ["section-hero-about-us", "section-cta-about-us"]
    assert store.get("other") is None


def test_file_store_loads_sections_back(tmp_path):
    store = FileWebsiteStore(str(tmp_path))
    assert store.load_sections("site-1", "About Us") == []
    store.save_page("site-1", "About Us", _sections())
    assert store.load_sections("site-1", "About Us") == _sections()


def test_file_store_rejects_corrupt_page(tmp_path):
    store = FileWebsiteStore(str(tmp_path))
    page = tmp_path / "site-1" / "pages" / "home.json"
    page.parent.mkdir(parents=True)
    page.write_text("{broken")
    with pytest.raises(PersistenceFailure):
        store.load_sections("site-1", "Home")


def test_in_memory_load_sections_returns_a_copy():
    store = InMemoryWebsiteStore()
    store.save_page("w", "Home", _sections())
    loaded = store.load_sections("w", "Home")
    loaded.pop()
    assert len(store.load_sections("w", "Home")) == 2
    assert store.load_sections("w", "Missing") == []
