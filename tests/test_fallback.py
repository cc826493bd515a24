import pytest

from sitegen.fallback import (
    darken_color,
    fallback_footer,
    fallback_header,
    fallback_page,
    fallback_section,
    page_sections,
    page_type,
    section_reference,
    tag_image_candidates,
)
from sitegen.html_fixer import is_balanced
from sitegen.models import SocialLinks, WebsiteSpec


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Home", "home"),
        ("About Us", "about"),
        ("Our Services", "services"),
        ("Contact", "contact"),
        ("Company Blog", "blog"),
        ("Gallery", "default"),
        ("Homepage", "default"),
    ],
)
def test_page_type_resolution(name, expected):
    assert page_type(name) == expected


def test_fallback_page_is_deterministic(spec):
    assert fallback_page(spec, "Home") == fallback_page(spec, "Home")
    assert fallback_page(spec, "Contact") == fallback_page(spec, "Contact")


def test_home_page_sections_and_references(spec):
    page = fallback_page(spec, "Home")
    assert page.fallback is True
    assert page.slug == "/"
    assert [s.section_type for s in page.sections] == ["hero", "intro", "features", "testimonials", "cta"]
    assert [s.reference for s in page.sections] == [
        "section-hero-home",
        "section-intro-home",
        "section-features-home",
        "section-testimonials-home",
        "section-cta-home",
    ]
    for section in page.sections:
        assert f'id="{section.reference}"' in section.markup
        assert section.stylesheet.startswith(f"#{section.reference}")
        assert is_balanced(section.markup)
    assert "Acme Plumbing" in page.sections[0].markup


def test_home_fallback_tags_two_image_candidates(spec):
    page = fallback_page(spec, "Home")
    assert [s.image_candidate for s in page.sections] == [True, True, False, False, False]
    assert tag_image_candidates(page.sections) == page.sections


def test_contact_page_uses_form_and_map_only_when_enabled(spec):
    page = fallback_page(spec, "Contact")
    assert [s.reference for s in page.sections] == ["section-form-contact", "section-info-contact", "section-map-contact"]
    assert "<form" in page.sections[0].markup
    assert "hello@acme.test" in page.sections[1].markup
    assert "<iframe" not in page.sections[2].markup

    with_map = spec.model_copy(update={"has_google_map": True, "google_map_url": "https://maps.example/embed"})
    mapped = fallback_page(with_map, "Contact")
    assert "maps.example" in mapped.sections[2].markup


def test_section_css_uses_theme_colors(spec):
    section = fallback_section(spec, "Home", "cta", "Call to Action")
    assert "#3366cc" in section.stylesheet
    assert darken_color("#3366cc", 10) in section.stylesheet


def test_unsafe_theme_values_fall_back_to_defaults(spec):
    hostile = spec.model_copy(update={"primary_color": "red; } body { display:none", "font_family": "x; } * {"})
    section = fallback_section(hostile, "Home", "hero")
    assert "display:none" not in section.stylesheet
    assert "#0d6efd" in section.stylesheet
    assert "} * {" not in section.stylesheet


def test_unknown_section_type_renders_generic(spec):
    section = fallback_section(spec, "Gallery", "timeline", "Our Timeline")
    assert section.reference == "section-timeline-gallery"
    assert "Our Timeline" in section.markup
    assert section_reference("Image Grid", "About Us") == "section-image-grid-about-us"


def test_explicit_reference_is_kept(spec):
    section = fallback_section(spec, "Home", "hero", reference="section-hero-custom")
    assert section.reference == "section-hero-custom"
    assert 'id="section-hero-custom"' in section.markup


def test_header_links_every_page(spec):
    header = fallback_header(spec)
    assert header.fallback is True
    assert "sg-site-header" in header.markup
    assert 'href="/"' in header.markup and 'href="/contact"' in header.markup
    assert "Acme Plumbing" in header.markup
    assert is_balanced(header.markup)


def test_footer_contact_and_social(spec):
    social = spec.model_copy(update={"social_links": SocialLinks(twitter="acme")})
    footer = fallback_footer(social)
    assert "hello@acme.test" in footer.markup
    assert "https://twitter.com/acme" in footer.markup
    assert "facebook.com" not in footer.markup
    assert footer.stylesheet


def test_footer_year_comes_from_the_website(spec):
    dated = spec.model_copy(update={"copyright_year": 2031})
    assert "&copy; 2031 Acme Plumbing" in fallback_footer(dated).markup
    assert fallback_footer(dated) == fallback_footer(dated)
    assert WebsiteSpec.model_validate({"businessName": "Acme", "copyrightYear": 2030}).copyright_year == 2030


def test_business_name_is_escaped():
    spec = WebsiteSpec(business_name="<script>alert(1)</script>", pages=["Home"])
    header = fallback_header(spec)
    assert "<script>" not in header.markup
    assert "&lt;script&gt;" in header.markup


def test_darken_color():
    assert darken_color("#ffffff", 10) == "#e5e5e5"
    assert darken_color("#fff", 50) == "#7f7f7f"
    assert darken_color("tomato", 10) == "tomato"


def test_every_page_type_has_a_structure():
    for name in ("Home", "About", "Services", "Contact", "Blog", "Anything"):
        assert page_sections(name)
