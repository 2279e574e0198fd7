"""
Archive domain types: image records, report requests, templates and batches.

Stored documents use the camelCase field names the web client reads
(`imageIds`, `extractedText`, `reportUrl`, ...). The dataclasses here keep
snake_case attributes and convert at the boundary.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


IMAGES = "images"
REPORTS = "reports"
TEMPLATES = "templates"


class Status(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Depth(str, Enum):
    BRIEF = "brief"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class Style(str, Enum):
    CASUAL = "casual"
    PROFESSIONAL = "professional"
    ACADEMIC = "academic"


class SectionKind(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.FAILED})

_ALLOWED_TRANSITIONS = {
    Status.PENDING: {Status.PROCESSING, Status.FAILED},
    Status.PROCESSING: {Status.COMPLETED, Status.FAILED},
    Status.COMPLETED: set(),
    Status.FAILED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a record would move backwards along its status lifecycle."""


class ReportValidationError(ValueError):
    """Raised when a report request is incomplete or malformed."""


def parse_status(value: object) -> Status:
    """Parse a stored status literal; unknown values are an error."""
    try:
        return Status(value)
    except ValueError:
        raise ValueError(f"unrecognized status: {value!r}") from None


def ensure_transition(current: Status, target: Status, *, reset: bool = False) -> None:
    """Validate a status change.

    Only `pending -> processing -> {completed|failed}` moves forward; the
    explicit reset (`reset=True`) is the single path back to `pending`.
    """
    if reset and target is Status.PENDING:
        return
    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"{current.value} -> {target.value}")


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def isoformat(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()


# ----------------------------- Images ----------------------------------------


@dataclass
class ImageRecord:
    id: str
    owner_id: str
    image_url: str
    file_name: str
    file_size: int = 0
    uploaded_at: Optional[str] = None
    status: Status = Status.PENDING
    extracted_text: str = ""
    error: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "ImageRecord":
        return cls(
            id=str(doc["id"]),
            owner_id=str(doc.get("userId") or ""),
            image_url=str(doc.get("imageUrl") or ""),
            file_name=str(doc.get("fileName") or ""),
            file_size=int(doc.get("fileSize") or 0),
            uploaded_at=doc.get("uploadedAt"),
            status=parse_status(doc.get("status", Status.PENDING.value)),
            extracted_text=str(doc.get("extractedText") or ""),
            error=doc.get("error"),
        )


@dataclass(frozen=True)
class ExhibitImage:
    """An image selected for a report, carrying its global exhibit position."""

    position: int
    image_id: str
    file_name: str
    image_url: str
    extracted_text: str

    @property
    def exhibit_number(self) -> int:
        return self.position + 1


# ----------------------------- Templates -------------------------------------


@dataclass(frozen=True)
class TemplateSection:
    name: str
    kind: SectionKind = SectionKind.MULTI
    subheadings: tuple[str, ...] = ()

    def to_document(self) -> dict:
        doc: dict = {"name": self.name, "kind": self.kind.value}
        if self.kind is SectionKind.MULTI:
            doc["subheadings"] = list(self.subheadings)
        return doc


@dataclass(frozen=True)
class ReportTemplate:
    name: str
    sections: tuple[TemplateSection, ...]
    id: Optional[str] = None
    owner_id: Optional[str] = None

    @property
    def section_names(self) -> list[str]:
        """Names rendered as standalone bold section headings."""
        return [s.name for s in self.sections if s.kind is SectionKind.MULTI]

    @property
    def subheading_names(self) -> list[str]:
        """Names rendered as `**Name:** value` fields."""
        names: list[str] = []
        for section in self.sections:
            candidates = section.subheadings if section.kind is SectionKind.MULTI else (section.name,)
            for name in candidates:
                if name not in names:
                    names.append(name)
        return names

    def to_document(self) -> dict:
        doc: dict = {"name": self.name, "sections": [s.to_document() for s in self.sections]}
        if self.owner_id:
            doc["userId"] = self.owner_id
        return doc

    @classmethod
    def from_document(cls, doc: dict) -> "ReportTemplate":
        sections = []
        for raw in doc.get("sections") or []:
            kind = SectionKind(raw.get("kind", SectionKind.MULTI.value))
            subs = tuple(raw.get("subheadings") or ()) if kind is SectionKind.MULTI else ()
            sections.append(TemplateSection(name=str(raw.get("name") or ""), kind=kind, subheadings=subs))
        return cls(
            name=str(doc.get("name") or ""),
            sections=tuple(sections),
            id=doc.get("id"),
            owner_id=doc.get("userId"),
        )


DEFAULT_TEMPLATE = ReportTemplate(
    name="Museum exhibit",
    sections=(
        TemplateSection("Title", SectionKind.SINGLE),
        TemplateSection("Historical Significance", SectionKind.MULTI, ("Date", "Significance")),
        TemplateSection("Physical Condition", SectionKind.MULTI, ("Materials", "Condition")),
        TemplateSection("Preservation", SectionKind.MULTI, ("Recommendations",)),
    ),
)


# ----------------------------- Reports ---------------------------------------


@dataclass(frozen=True)
class ReportRequest:
    id: str
    owner_id: str
    image_ids: tuple[str, ...]
    prompt: str
    depth: Depth = Depth.STANDARD
    style: Style = Style.PROFESSIONAL
    template: Optional[ReportTemplate] = None
    template_id: Optional[str] = None


@dataclass(frozen=True)
class Progress:
    images_processed: int
    total_images: int
    message: str

    def to_document(self) -> dict:
        return {
            "imagesProcessed": self.images_processed,
            "totalImages": self.total_images,
            "message": self.message,
        }


@dataclass(frozen=True)
class BatchMetrics:
    total_batches: int
    successful_batches: int
    failed_batches: int
    retried_batches: int
    images_per_batch: int

    def to_document(self) -> dict:
        return {
            "totalBatches": self.total_batches,
            "successfulBatches": self.successful_batches,
            "failedBatches": self.failed_batches,
            "retriedBatches": self.retried_batches,
            "imagesPerBatch": self.images_per_batch,
        }


@dataclass(frozen=True)
class InlineReport:
    text: str


@dataclass(frozen=True)
class ExternalReport:
    url: str


ReportLocation = Union[InlineReport, ExternalReport]


# ----------------------------- Batches ---------------------------------------


@dataclass(frozen=True)
class Batch:
    """Contiguous slice of exhibit images processed by one generation call."""

    index: int
    images: tuple[ExhibitImage, ...]

    @property
    def first_exhibit(self) -> int:
        return self.images[0].exhibit_number

    @property
    def last_exhibit(self) -> int:
        return self.images[-1].exhibit_number

    def __len__(self) -> int:
        return len(self.images)


@dataclass
class BatchResult:
    batch_index: int
    success: bool
    text: str = ""
    error: Optional[str] = None
    image_count: int = 0
    omitted: int = 0


__all__ = [
    "IMAGES",
    "REPORTS",
    "TEMPLATES",
    "Status",
    "Depth",
    "Style",
    "SectionKind",
    "TERMINAL_STATUSES",
    "InvalidTransitionError",
    "ReportValidationError",
    "parse_status",
    "ensure_transition",
    "utcnow",
    "isoformat",
    "ImageRecord",
    "ExhibitImage",
    "TemplateSection",
    "ReportTemplate",
    "DEFAULT_TEMPLATE",
    "ReportRequest",
    "Progress",
    "BatchMetrics",
    "InlineReport",
    "ExternalReport",
    "ReportLocation",
    "Batch",
    "BatchResult",
]
