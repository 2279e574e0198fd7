"Exhibit archive API"
from __future__ import annotations

import logging
import os
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from backend.web.routes.images import images_router
from backend.web.routes.operations import operations_router
from backend.web.routes.reports import reports_router
from backend.web.routes.security import error_response, private_response
from backend.web.routes.templates import templates_router


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out/opt-in via ARCHIVE_ENABLE_DOTENV (default true
      outside pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("ARCHIVE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    from dotenv import load_dotenv

    load_dotenv()

logger = logging.getLogger("archive.web")

app = FastAPI(title="Exhibit archive", description="Museum image archive and report generation", version="0.1.0")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("archive.web.validation path=%s errors=%s", request.url.path, len(exc.errors()))
    return error_response("bad_request", status_code=400, detail="invalid_input")


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response


app.include_router(reports_router)
app.include_router(images_router)
app.include_router(templates_router)
app.include_router(operations_router)


@app.get("/health")
async def health_check():
    # Minimal health endpoint used by orchestrators and tests.
    return private_response({"status": "healthy"})


def main() -> None:
    """Serve the API with uvicorn (`ARCHIVE_HOST`, `ARCHIVE_PORT`)."""
    import uvicorn

    level_name = (os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper()
    logging.basicConfig(level=level_name)
    uvicorn.run(
        app,
        host=os.getenv("ARCHIVE_HOST", "0.0.0.0"),
        port=int(os.getenv("ARCHIVE_PORT", "8000")),
        log_level=level_name.lower(),
    )


if __name__ == "__main__":
    main()
