"""
Prompt construction for report generation and text extraction.

The system prompt fixes tone (style), length (depth) and the heading
contract the formatting normalizer relies on; the structural example is
rendered from the active template so custom templates steer the model the
same way the default one does.
"""
from __future__ import annotations

from typing import Sequence

from backend.archive.domain import DEFAULT_TEMPLATE, Depth, ExhibitImage, ReportTemplate, SectionKind, Style


DEPTH_GUIDANCE = {
    Depth.BRIEF: "Be concise and focus on key findings.",
    Depth.STANDARD: "Provide balanced analysis with important details.",
    Depth.COMPREHENSIVE: "Be thorough and detailed in your analysis.",
}

STYLE_GUIDANCE = {
    Style.CASUAL: "Use a friendly, conversational tone. Write as if explaining to a curious visitor.",
    Style.PROFESSIONAL: "Use clear, professional museum language. Be informative and authoritative.",
    Style.ACADEMIC: "Use formal, scholarly language. Include technical terminology and detailed analysis.",
}

EXTRACTION_PROMPT = """Extract all visible text from this image. Include:
- Any printed text
- Handwritten text (if legible)
- Text on labels, signs, or documents
- Numbers and dates

Return ONLY the extracted text, maintaining the original layout and structure as much as possible. If there is no text in the image, respond with "No text detected"."""

EXTRACTION_SYSTEM_PROMPT = "You transcribe text from photographs of museum exhibits."

_STRUCTURE = """FORMATTING STRUCTURE (use this as your template):
---
**EXHIBIT [NUMBER]** (all caps, bold)

**Title:** [object name]

**[Section Name]**

**Sub-heading:** [content]
**Sub-heading:** [content]
---"""


def render_template_example(template: ReportTemplate) -> str:
    """Render the template as the example block shown to the model."""
    lines: list[str] = []
    for section in template.sections:
        if section.kind is SectionKind.SINGLE:
            lines.append(f"**{section.name}:** ...")
            continue
        if lines:
            lines.append("")
        lines.append(f"**{section.name}**")
        lines.extend(f"**{sub}:** ..." for sub in section.subheadings)
    return "\n".join(lines)


def build_system_prompt(style: Style, depth: Depth, template: ReportTemplate | None = None) -> str:
    active = template or DEFAULT_TEMPLATE
    return f"""You are analyzing museum exhibits. Follow the user's custom instructions for WHAT to analyze, but maintain consistent formatting.

TONE: {STYLE_GUIDANCE[style]}

{_STRUCTURE}

EXAMPLE FORMAT for sections (you can adapt sections based on user's instructions):

{render_template_example(active)}

CRITICAL RULES:
- **EXHIBIT [NUMBER]** must be ALL CAPS and bold
- Use **bold** for ALL section headers and sub-headers
- Each sub-heading on its OWN line
- NO numbering (1., 2., 3.) before headings
- {DEPTH_GUIDANCE[depth]}

Now follow the user's specific analysis instructions below."""


def build_batch_text(prompt: str, images: Sequence[ExhibitImage]) -> str:
    """User text for one batch: instructions, extracted text, exhibit bounds."""
    extracted = "\n\n".join(f"[Image {img.exhibit_number}]: {img.extracted_text}" for img in images)
    first, last = images[0].exhibit_number, images[-1].exhibit_number
    return (
        f"USER'S ANALYSIS INSTRUCTIONS:\n{prompt}\n\n"
        f"Analyze these {len(images)} physical museum exhibits in ORDER based on the instructions above.\n\n"
        f"Extracted text from images:\n{extracted}\n\n"
        f"Generate report for exhibits {first} to {last}."
    )


def build_single_shot_text(prompt: str, images: Sequence[ExhibitImage]) -> str:
    """User text when all exhibits go into one call."""
    combined = "\n".join(f"--- {img.file_name} ---\n{img.extracted_text}\n" for img in images)
    return (
        f"USER'S ANALYSIS INSTRUCTIONS:\n{prompt}\n\n"
        "You are viewing PHOTOGRAPHS of physical museum exhibits. Analyze the ACTUAL objects you see "
        "in these images based on the instructions above.\n\n"
        f"Extracted text from images:\n\n{combined}\n\n"
        "Use this text along with your VISUAL analysis to generate your report in markdown format."
    )


__all__ = [
    "DEPTH_GUIDANCE",
    "STYLE_GUIDANCE",
    "EXTRACTION_PROMPT",
    "EXTRACTION_SYSTEM_PROMPT",
    "render_template_example",
    "build_system_prompt",
    "build_batch_text",
    "build_single_shot_text",
]
