"""Report templates: normalize, validate and persist per owner."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from backend.archive.domain import TEMPLATES, ReportTemplate, SectionKind, TemplateSection, isoformat, utcnow
from backend.storage.ports import DocumentStoreProtocol, Filter, Query

LOG = logging.getLogger(__name__)


class TemplateValidationError(ValueError):
    """Raised for templates without a name or with unnamed sections."""


def clean_sections(raw_sections: Iterable[dict]) -> tuple[TemplateSection, ...]:
    """Strip names and drop blank sub-heading entries."""
    sections: list[TemplateSection] = []
    for raw in raw_sections:
        name = str(raw.get("name") or "").strip()
        if not name:
            raise TemplateValidationError("Section name must not be empty")
        try:
            kind = SectionKind(str(raw.get("kind") or SectionKind.MULTI.value).strip().lower())
        except ValueError:
            raise TemplateValidationError(f"Unknown section kind: {raw.get('kind')}") from None
        subheadings: tuple[str, ...] = ()
        if kind is SectionKind.MULTI:
            subheadings = tuple(
                s.strip() for s in (raw.get("subheadings") or []) if isinstance(s, str) and s.strip()
            )
        sections.append(TemplateSection(name=name, kind=kind, subheadings=subheadings))
    return tuple(sections)


async def save_template(
    documents: DocumentStoreProtocol,
    owner_id: str,
    name: str,
    sections: Iterable[dict],
    *,
    template_id: Optional[str] = None,
) -> ReportTemplate:
    """Create or overwrite a template owned by `owner_id`.

    Raises:
        TemplateValidationError: blank template or section name, unknown kind.
        LookupError/PermissionError: `template_id` unknown or foreign.
    """
    clean_name = (name or "").strip()
    if not clean_name:
        raise TemplateValidationError("Template name must not be empty")
    template = ReportTemplate(name=clean_name, sections=clean_sections(sections), owner_id=owner_id)
    if not template.sections:
        raise TemplateValidationError("Template needs at least one section")
    doc = template.to_document()
    doc["updatedAt"] = isoformat(utcnow())
    if template_id:
        await get_template(documents, template_id, owner_id)
        await documents.update(TEMPLATES, template_id, doc)
        saved_id = template_id
    else:
        doc["createdAt"] = doc["updatedAt"]
        saved_id = await documents.create(TEMPLATES, doc)
    LOG.info("archive.templates action=saved template_id=%s sections=%s", saved_id, len(template.sections))
    return ReportTemplate(name=template.name, sections=template.sections, id=saved_id, owner_id=owner_id)


async def get_template(documents: DocumentStoreProtocol, template_id: str, owner_id: str) -> ReportTemplate:
    doc = await documents.get(TEMPLATES, template_id)
    if doc is None:
        raise LookupError("template not found")
    if doc.get("userId") != owner_id:
        raise PermissionError("template belongs to another user")
    return ReportTemplate.from_document(doc)


async def list_templates(documents: DocumentStoreProtocol, owner_id: str) -> list[ReportTemplate]:
    docs = await documents.query(
        Query(collection=TEMPLATES, where=(Filter("userId", "==", owner_id),), order_by="name")
    )
    return [ReportTemplate.from_document(d) for d in docs]


__all__ = ["TemplateValidationError", "clean_sections", "save_template", "get_template", "list_templates"]
