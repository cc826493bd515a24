from __future__ import annotations

from typing import List, Tuple

from sitegen.fallback import page_type
from sitegen.models import WebsiteSpec, page_slug

SectionSpec = Tuple[str, List[str]]

_GUIDELINES_COMMON = [
    "Use semantic HTML5 elements",
    "Follow accessibility best practices (alt text, labels, contrast)",
    "Include all necessary Bootstrap 5 classes",
    "Do not include <html>, <head> or <body> tags",
    "Do not reference external scripts or stylesheets other than Bootstrap and Font Awesome",
    "DO NOT add any explanation text outside the JSON object",
]


def _design_block(spec: WebsiteSpec, intro: str) -> str:
    return (
        "DESIGN REQUIREMENTS:\n"
        f"- {intro}\n"
        "- Use Bootstrap 5 for the base structure\n"
        f"- Primary Color: {spec.primary_color}\n"
        f"- Secondary Color: {spec.secondary_color}\n"
        f"- Font Family: {spec.font_family}\n"
        f"- Font Style: {spec.font_style}\n"
    )


def _numbered(items: List[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, 1))


def _nav_pages(spec: WebsiteSpec) -> str:
    if spec.structure == "single-page":
        return ", ".join(f"{p} (#{page_slug(p).strip('/') or 'home'})" for p in spec.pages)
    return ", ".join(f"{p} ({page_slug(p)})" for p in spec.pages)


def build_header_prompt(spec: WebsiteSpec) -> str:
    return (
        "You are a professional web developer creating the header for a website.\n\n"
        "WEBSITE DETAILS:\n"
        f"Business Name: {spec.business_name}\n"
        f"Business Category: {spec.business_category}\n"
        f"Website Title: {spec.title}\n"
        f"Website Tagline: {spec.website_tagline}\n\n"
        + _design_block(spec, "Create a responsive header with a navigation menu")
        + "- Include the business name/logo and the navigation menu\n"
        "- Collapse to a hamburger menu on small screens\n\n"
        "NAVIGATION MENU:\n"
        f"Include links to the following pages: {_nav_pages(spec)}\n\n"
        "OUTPUT FORMAT:\n"
        "Return ONLY a JSON object with these keys:\n"
        '- "content": the HTML code for the header\n'
        '- "css": custom CSS for the header, with every selector starting with header or .site-header\n\n'
        "IMPORTANT GUIDELINES:\n"
        + _numbered(_GUIDELINES_COMMON)
        + "\n"
    )


def _social_block(spec: WebsiteSpec) -> str:
    links = spec.social_links
    if not links.any():
        return ""
    lines = ["SOCIAL MEDIA LINKS:"]
    if links.facebook:
        lines.append(f"- Facebook: facebook.com/{links.facebook}")
    if links.instagram:
        lines.append(f"- Instagram: instagram.com/{links.instagram}")
    if links.twitter:
        lines.append(f"- Twitter: twitter.com/{links.twitter}")
    if links.linkedin:
        lines.append(f"- LinkedIn: linkedin.com/company/{links.linkedin}")
    return "\n".join(lines) + "\n\n"


def build_footer_prompt(spec: WebsiteSpec) -> str:
    contact = [
        f"Address: {spec.address}" if spec.address else "",
        f"Email: {spec.email}" if spec.email else "",
        f"Phone: {spec.phone}" if spec.phone else "",
    ]
    contact_block = "\n".join(c for c in contact if c) or "Not provided"
    newsletter = "- Include a compact newsletter signup form\n" if spec.has_newsletter else ""
    return (
        "You are a professional web developer creating the footer for a website.\n\n"
        "WEBSITE DETAILS:\n"
        f"Business Name: {spec.business_name}\n"
        f"Business Description: {spec.business_description}\n\n"
        "CONTACT INFORMATION:\n"
        f"{contact_block}\n\n"
        + _social_block(spec)
        + _design_block(spec, "Create a responsive footer with multiple columns")
        + "- Include copyright information with the current year\n"
        f"- Include quick links to the main pages: {_nav_pages(spec)}\n"
        + newsletter
        + "\nOUTPUT FORMAT:\n"
        "Return ONLY a JSON object with these keys:\n"
        '- "content": the HTML code for the footer\n'
        '- "css": custom CSS for the footer, with every selector starting with footer or .site-footer\n\n'
        "IMPORTANT GUIDELINES:\n"
        + _numbered(_GUIDELINES_COMMON + ["Include social media icons if social links are provided"])
        + "\n"
    )


def _home_sections(spec: WebsiteSpec) -> List[SectionSpec]:
    sections: List[SectionSpec] = [
        ("Hero Section", ["Headline with the main value proposition", "Supporting subheading", "Primary call-to-action button"]),
        ("Introduction Section", ["Engaging introduction to the business", "Supporting image or icon"]),
        ("Services/Features Section", ["3-4 key services or features in cards", "An icon and short description for each"]),
        ("Testimonials Section", ["2-3 customer testimonials", "Customer names and roles"]),
    ]
    if spec.has_image_slider:
        sections.append(("Image Slider", ["Responsive Bootstrap carousel", "3-5 placeholder images with captions", "Navigation controls"]))
    if spec.has_newsletter:
        sections.append(("Newsletter Section", ["Brief benefit statement", "Email input and submit button", "Privacy note"]))
    sections.append(("Call to Action Section", ["Compelling heading", "Brief supporting text", "Prominent button"]))
    return sections


def _contact_sections(spec: WebsiteSpec) -> List[SectionSpec]:
    sections: List[SectionSpec] = [
        ("Page Header Section", ["Page title (Contact Us)", "Brief invitation to get in touch"]),
        ("Contact Form Section", ["Name, email and phone fields", "Subject dropdown and message area", "Submit button"]),
        ("Contact Information Section", ["Address", "Phone number", "Email address", "Business hours"]),
    ]
    if spec.has_google_map:
        source = f"Embedded map from URL: {spec.google_map_url}" if spec.google_map_url else "Placeholder for a map"
        sections.append(("Map Section", [source, "Location marker", "Directions link"]))
    return sections


def section_descriptions(spec: WebsiteSpec, page_name: str) -> List[SectionSpec]:
    kind = page_type(page_name)
    if kind == "home":
        return _home_sections(spec)
    if kind == "contact":
        return _contact_sections(spec)
    if kind == "about":
        return [
            ("Page Header Section", ["Page title (About Us)", "Brief overview statement"]),
            ("Our Story Section", ["Founding story", "Milestones", "Supporting imagery"]),
            ("Team Section", ["3-4 team member profiles with placeholder images", "Short bios"]),
            ("Values Section", ["3-5 core values as cards", "An icon and description for each"]),
            ("Call to Action Section", ["Transition statement", "Call-to-action button"]),
        ]
    if kind == "services":
        return [
            ("Page Header Section", ["Page title", "Brief overview statement"]),
            ("Services Overview Section", ["Introduction to the service offering"]),
            ("Service Details Section", ["4-6 individual services", "Icons and benefit lists"]),
            ("Process Section", ["3-5 step process", "Short description per step"]),
            ("Pricing Section", ["3 pricing tiers", "Features per tier and a button"]),
            ("FAQ Section", ["4-6 questions with concise answers", "Collapsible accordion"]),
            ("Call to Action Section", ["Compelling heading", "Prominent button"]),
        ]
    if kind == "blog":
        return [
            ("Blog Header Section", ["Blog title", "Short introduction"]),
            ("Featured Posts Section", ["1-2 highlighted posts with image, title and excerpt"]),
            ("Recent Posts Section", ["Grid of 3-6 recent post cards"]),
        ]
    return [
        ("Page Header Section", [f"Page title ({page_name})", "Brief introduction"]),
        ("Main Content Section", [f"Relevant information about {page_name}", "Supporting visuals"]),
        ("Secondary Content Section", ["Related content", "Supporting elements"]),
        ("Call to Action Section", ["Transition statement", "Relevant button"]),
    ]


def _format_sections(sections: List[SectionSpec]) -> str:
    out = []
    for i, (title, bullets) in enumerate(sections, 1):
        out.append(f"{i}. {title} - include:")
        out.extend(f"   - {b}" for b in bullets)
    return "\n".join(out)


def build_page_prompt(spec: WebsiteSpec, page_name: str, custom_instructions: str = "") -> str:
    extra = f"\nADDITIONAL INSTRUCTIONS:\n{custom_instructions.strip()}\n" if custom_instructions.strip() else ""
    return (
        f"You are a professional web developer creating the {page_name} page for a website.\n\n"
        "WEBSITE DETAILS:\n"
        f"Business Name: {spec.business_name}\n"
        f"Business Category: {spec.business_category}\n"
        f"Business Description: {spec.business_description}\n"
        f"Website Title: {spec.title}\n"
        f"Website Tagline: {spec.website_tagline}\n"
        f"Website Purpose: {spec.website_purpose}\n\n"
        + _design_block(spec, "Create a responsive, modern page design")
        + "\nPAGE STRUCTURE:\n"
        f"Create the following sections for the {page_name} page:\n"
        + _format_sections(section_descriptions(spec, page_name))
        + "\n"
        + extra
        + "\nOUTPUT FORMAT:\n"
        'Return ONLY a JSON object with a "sections" array. Each section must have:\n'
        '- "sectionReference": a unique id for the section (e.g. "section-hero-123456")\n'
        '- "type": a short section type such as hero, about, features, testimonials, cta\n'
        '- "content": the HTML for the section, whose outer element has id equal to sectionReference\n'
        '- "css": the CSS for this section, every selector starting with #<sectionReference>\n\n'
        "IMPORTANT GUIDELINES:\n"
        + _numbered(
            _GUIDELINES_COMMON
            + [
                "Write realistic content based on the business description",
                "Use appropriate heading levels (h1 only in the first section)",
            ]
        )
        + "\n"
    )


def build_section_prompt(
    spec: WebsiteSpec,
    page_name: str,
    section_type: str,
    custom_instructions: str = "",
    is_regeneration: bool = False,
) -> str:
    verb = "regenerating an improved version of" if is_regeneration else "creating"
    extra = f"\nADDITIONAL INSTRUCTIONS:\n{custom_instructions.strip()}\n" if custom_instructions.strip() else ""
    return (
        f"You are a professional web developer {verb} a {section_type} section "
        f"for the {page_name} page of a website.\n\n"
        "WEBSITE DETAILS:\n"
        f"Business Name: {spec.business_name}\n"
        f"Business Category: {spec.business_category}\n"
        f"Business Description: {spec.business_description}\n\n"
        + _design_block(spec, f"Create a responsive {section_type} section")
        + extra
        + "\nOUTPUT FORMAT:\n"
        "Return ONLY a JSON object with these keys:\n"
        '- "content": the HTML for the section\n'
        '- "css": the CSS for the section\n\n'
        "IMPORTANT GUIDELINES:\n"
        + _numbered(_GUIDELINES_COMMON)
        + "\n"
    )


def build_completion_prompt(original_prompt: str, partial: str) -> str:
    """Ask the model to carry on from exactly where a truncated answer stopped."""
    return (
        "Your previous answer was cut off before it was finished.\n\n"
        "ORIGINAL REQUEST:\n"
        f"{original_prompt.strip()}\n\n"
        "YOUR ANSWER SO FAR:\n"
        f"{partial}\n\n"
        "Continue EXACTLY where the answer stops. Output only the missing remainder, "
        "without repeating anything already written and without any commentary."
    )
