"""HTTP API for trellis.

A small FastAPI app over one :class:`TrellisDB`: preset catalog, scan
preview, migrate, rollback and job history per tenant. Errors use the
envelope ``{"error": {"message", "code", "details"}}``.

Usage:
    trellis serve                    # http://127.0.0.1:8377
    trellis serve --port 9000
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi.responses import JSONResponse
    from starlette.requests import Request

from trellis import service
from trellis.core import DB_FILENAME, TrellisDB, find_trellis_root, read_config
from trellis.errors import (
    AuthorizationError,
    ExecutionError,
    PreconditionError,
    TrellisError,
    ValidationError,
)
from trellis.logging import DEFAULT_LOG_LEVEL, setup_logging
from trellis.presets import DEFAULT_PRESET_KEY, get_preset, list_presets
from trellis.types.migration import MigrationResult

DEFAULT_PORT = 8377

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[TrellisError], int], ...] = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (PreconditionError, 409),
    (ExecutionError, 500),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    from fastapi.responses import JSONResponse

    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


def _trellis_error_response(error: TrellisError) -> JSONResponse:
    status_code = next((s for cls, s in _STATUS_BY_ERROR if isinstance(error, cls)), 500)
    details: dict[str, Any] = {}
    if isinstance(error, ExecutionError) and error.job_id:
        details["jobId"] = error.job_id
    return _error_response(str(error), error.code, status_code, details)


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse a JSON object body, returning 400 on failure. An empty body is ``{}``."""
    import json

    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _camel_result(result: MigrationResult) -> dict[str, Any]:
    summary = result["summary"]
    return {
        "jobId": result["job_id"],
        "tenantId": result["tenant_id"],
        "status": result["status"],
        "summary": {
            "movedItems": summary["moved_items"],
            "flaggedForReview": summary["flagged_for_review"],
            "invalidItems": summary["invalid_items"],
        },
    }


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(db: TrellisDB) -> Any:
    """Create the FastAPI application bound to *db*.

    Handlers are async so all SQLite access stays on the event loop thread
    and never races on the shared connection.
    """
    from fastapi import APIRouter, FastAPI, Request
    from fastapi.responses import JSONResponse

    # Expose annotation names in module globals so PEP 563 deferred annotations resolve
    globals()["Request"] = Request
    globals()["JSONResponse"] = JSONResponse

    router = APIRouter()

    @router.get("/presets")
    async def api_presets() -> JSONResponse:
        return JSONResponse([p.to_dict() for p in list_presets()])

    @router.get("/presets/{key}")
    async def api_preset_detail(key: str) -> JSONResponse:
        try:
            preset = get_preset(key)
        except KeyError:
            return _error_response(f"Unknown preset: {key}", "NOT_FOUND", 404, {"key": key})
        return JSONResponse(preset.to_dict())

    @router.post("/tenants/{tenant_id}/scan")
    async def api_scan(tenant_id: str, request: Request) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = service.preview(
                db,
                tenant_id,
                body.get("presetKey"),
                body.get("preset"),
                body.get("actor"),
            )
        except TrellisError as e:
            return _trellis_error_response(e)
        return JSONResponse(result)

    @router.post("/tenants/{tenant_id}/migrations")
    async def api_migrate(tenant_id: str, request: Request) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = service.migrate(
                db,
                tenant_id,
                body.get("toPresetKey"),
                body.get("mode"),
                body.get("preset"),
                body.get("actor"),
            )
        except TrellisError as e:
            return _trellis_error_response(e)
        return JSONResponse(_camel_result(result), status_code=201)

    @router.post("/tenants/{tenant_id}/migrations/{job_id}/rollback")
    async def api_rollback(tenant_id: str, job_id: str, request: Request) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            result = service.rollback(db, tenant_id, job_id, body.get("actor"))
        except TrellisError as e:
            return _trellis_error_response(e)
        return JSONResponse(
            {
                "jobId": result["job_id"],
                "tenantId": result["tenant_id"],
                "status": result["status"],
                "revertedMoves": result["reverted_moves"],
            }
        )

    @router.get("/tenants/{tenant_id}/migrations")
    async def api_list_jobs(tenant_id: str, limit: int = 20) -> JSONResponse:
        if limit < 1:
            return _error_response("limit must be >= 1", "VALIDATION_ERROR", 400, {"param": "limit"})
        return JSONResponse([j.to_dict() for j in db.list_jobs(tenant_id, limit=limit)])

    @router.get("/tenants/{tenant_id}/migrations/{job_id}")
    async def api_job_detail(tenant_id: str, job_id: str) -> JSONResponse:
        job = db.get_job(tenant_id, job_id)
        if job is None:
            return _error_response(f"Job not found: {job_id}", "NOT_FOUND", 404, {"jobId": job_id})
        report = db.get_report(job_id)
        return JSONResponse({"job": job.to_dict(), "report": report.to_dict() if report else None})

    app = FastAPI(title="Trellis", docs_url=None, redoc_url=None)
    app.include_router(router, prefix="/api")
    return app


def main(host: str = "127.0.0.1", port: int = DEFAULT_PORT) -> None:
    """Serve the API for the project discovered from the current directory."""
    import uvicorn

    trellis_dir = find_trellis_root()
    config = read_config(trellis_dir)
    setup_logging(trellis_dir, level=config.get("log_level", DEFAULT_LOG_LEVEL))
    db = TrellisDB(
        trellis_dir / DB_FILENAME,
        prefix=config.get("prefix", "trellis"),
        default_preset=config.get("default_preset", DEFAULT_PRESET_KEY),
        check_same_thread=False,
    )
    db.initialize()
    app = create_app(db)

    print(f"Trellis API: http://{host}:{port}/api")
    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    finally:
        db.close()
