"""Use case layer for the archive context.

Re-export the pipeline entrypoints for convenient imports in the worker,
the web layer and tests.
"""

from .extraction import extract_image_text, reset_image_extraction
from .images import delete_image, register_image
from .normalize import normalize_report
from .reports import generate_report
from .requests import CreateReportInput, create_report_request, get_report, list_reports
from .templates import get_template, list_templates, save_template

__all__ = [
    "extract_image_text",
    "reset_image_extraction",
    "register_image",
    "delete_image",
    "normalize_report",
    "generate_report",
    "CreateReportInput",
    "create_report_request",
    "get_report",
    "list_reports",
    "save_template",
    "get_template",
    "list_templates",
]
