"""Template endpoints: save and list the caller's report templates."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.archive.domain import ReportTemplate
from backend.archive.usecases.templates import TemplateValidationError, list_templates, save_template
from backend.web.routes.security import error_response, private_response, require_owner, require_same_origin
from backend.web.storage_wiring import get_stores

templates_router = APIRouter(tags=["Templates"])


class SectionPayload(BaseModel):
    name: str = Field(default="", max_length=200)
    kind: str = Field(default="multi")
    subheadings: list[str] = Field(default_factory=list)


class TemplateSavePayload(BaseModel):
    id: Optional[str] = None
    name: str = Field(default="", max_length=200)
    sections: list[SectionPayload] = Field(default_factory=list)


def _serialize(template: ReportTemplate) -> dict:
    body = template.to_document()
    body["id"] = template.id
    body.pop("userId", None)
    return body


@templates_router.post("/api/templates")
async def post_template(request: Request, payload: TemplateSavePayload):
    """
    Create a template, or overwrite one when `id` is given.

    Behavior:
        - Names are trimmed; blank sub-heading entries are dropped.
        - 201 on create, 200 on overwrite, 400 on blank names.
    """
    owner_id, error = require_owner(request)
    if error:
        return error
    csrf = require_same_origin(request)
    if csrf:
        return csrf
    try:
        template = await save_template(
            get_stores().documents,
            owner_id,
            payload.name,
            [section.model_dump() for section in payload.sections],
            template_id=payload.id,
        )
    except TemplateValidationError as exc:
        return error_response("bad_request", status_code=400, detail=str(exc))
    except LookupError:
        return error_response("not_found", status_code=404)
    except PermissionError:
        return error_response("forbidden", status_code=403)
    return private_response(_serialize(template), status_code=200 if payload.id else 201)


@templates_router.get("/api/templates")
async def get_templates(request: Request):
    owner_id, error = require_owner(request)
    if error:
        return error
    templates = await list_templates(get_stores().documents, owner_id)
    return private_response([_serialize(t) for t in templates])


__all__ = ["templates_router"]
