"""FastAPI service for FNOL intake and the insurer dashboard."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from fnol.insurer import AccessGate, InsurerDashboard
from fnol.intake import IntakeService, build_intake_service
from fnol.stages.media import content_type_for
from fnol.storage import LocalObjectStorage, ReconciliationSweep
from fnol.utils.config import Config
from fnol.utils.errors import (
    AccessDeniedError,
    ClaimsProcessingError,
    ConfigurationError,
    ErrorType,
    StorageError,
    ValidationError,
    WorkflowError,
)
from fnol.utils.logging import clear_context, setup_logging
from fnol.workflow.session import IntakeSession, PendingUpload

APP_TITLE = "FNOL Intake & Triage"
CONFIG_PATH = os.getenv("FNOL_CONFIG", "config.yaml")

logger = logging.getLogger("fnol.server")

_STATUS_BY_TYPE = {
    ErrorType.RECORD_NOT_FOUND: 404,
    ErrorType.RECORD_CONFLICT: 409,
    ErrorType.INVALID_TRANSITION: 409,
    ErrorType.OPERATION_IN_PROGRESS: 409,
}


def status_for(error: ClaimsProcessingError) -> int:
    """HTTP status for a processing error; upstream failures default to 502."""
    if error.error_type in _STATUS_BY_TYPE:
        return _STATUS_BY_TYPE[error.error_type]
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, AccessDeniedError):
        return 401
    if isinstance(error, WorkflowError):
        return 409
    if isinstance(error, ConfigurationError):
        return 503
    return 502


@dataclass
class StoredUpload:
    """In-memory representation of an uploaded file."""

    filename: str
    content_type: str
    data: bytes
    size: int


class PolicyRequest(BaseModel):
    policy_number: str


class AnswersRequest(BaseModel):
    answers: Dict[str, Optional[str]]


class LoginRequest(BaseModel):
    access_code: str


def _read_upload(file: UploadFile) -> StoredUpload:
    data = file.file.read()
    size = len(data)
    if size == 0:
        raise ValidationError.invalid_input(f"{file.filename} is empty.", field="files")
    return StoredUpload(
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=data,
        size=size,
    )


def _validate_uploads(request: Request, groups: Dict[str, List[StoredUpload]]) -> None:
    limits = request.app.state.config.uploads
    total_size = 0
    for key, items in groups.items():
        if len(items) > limits.max_files:
            raise ValidationError.invalid_input(
                f"Too many files for {key}. Max {limits.max_files} allowed.", field=key
            )
        for item in items:
            if item.size > limits.max_file_size_mb * 1024 * 1024:
                raise ValidationError.invalid_input(
                    f"{item.filename} exceeds the per-file limit of {limits.max_file_size_mb} MB.", field=key
                )
            total_size += item.size
    if total_size > limits.max_total_mb * 1024 * 1024:
        raise ValidationError.invalid_input(f"Combined upload size exceeds limit of {limits.max_total_mb} MB.")


def _pending(items: List[StoredUpload]) -> List[PendingUpload]:
    return [PendingUpload(filename=i.filename, content=i.data, content_type=i.content_type) for i in items]


def _service(request: Request) -> IntakeService:
    service = request.app.state.service
    if service is None:
        raise request.app.state.startup_error or ConfigurationError.missing("service", "Service failed to start")
    return service


def _session(request: Request, session_id: str) -> IntakeSession:
    return _service(request).get_session(session_id)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else None


def _dashboard(request: Request, authorization: Optional[str]) -> InsurerDashboard:
    return InsurerDashboard(_bearer(authorization), request.app.state.gate, _service(request))


def _session_payload(session: IntakeSession, **extra: Any) -> JSONResponse:
    payload = session.to_dict()
    payload.update(extra)
    return JSONResponse(jsonable_encoder(payload))


router = APIRouter()


@router.get("/healthz")
async def healthcheck(request: Request) -> Dict[str, str]:
    return {"status": "ok" if request.app.state.service is not None else "degraded"}


@router.get("/files/{key:path}", include_in_schema=False)
async def serve_file(key: str, request: Request) -> Response:
    storage = _service(request).storage
    if not isinstance(storage, LocalObjectStorage):
        raise HTTPException(status_code=404, detail="Files are not served by this instance.")
    try:
        content = storage.read(f"{storage.public_base_url}/{key}")
    except StorageError:
        raise HTTPException(status_code=404, detail="File not found.")
    return Response(content=content, media_type=content_type_for(content, None))


# Intake

@router.post("/api/intake/sessions")
async def open_session(request: Request) -> JSONResponse:
    session = _service(request).open_session()
    return _session_payload(session)


@router.get("/api/intake/sessions/{session_id}")
async def session_status(session_id: str, request: Request) -> JSONResponse:
    return _session_payload(_session(request, session_id))


@router.post("/api/intake/sessions/{session_id}/policy")
def validate_policy(session_id: str, body: PolicyRequest, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    verdict = _service(request).validate_policy(session, body.policy_number)
    return _session_payload(session, verdict=verdict.to_dict())


@router.post("/api/intake/sessions/{session_id}/policy-document")
async def upload_policy_document(
    session_id: str,
    request: Request,
    document: UploadFile = File(...),
) -> JSONResponse:
    session = _session(request, session_id)
    upload = _read_upload(document)
    _validate_uploads(request, {"document": [upload]})
    extraction = await _service(request).upload_policy_document(
        session, upload.filename, upload.data, upload.content_type
    )
    return _session_payload(session, extraction=extraction.to_dict())


@router.post("/api/intake/sessions/{session_id}/submit")
async def submit_claim(
    session_id: str,
    request: Request,
    incident_type: str = Form(...),
    incident_date: str = Form(...),
    description: str = Form(default=""),
    location: str = Form(default=""),
    vehicle_make: Optional[str] = Form(default=None),
    vehicle_model: Optional[str] = Form(default=None),
    vehicle_year: Optional[str] = Form(default=None),
    vehicle_vin: Optional[str] = Form(default=None),
    vehicle_license_plate: Optional[str] = Form(default=None),
    vehicle_ownership_status: Optional[str] = Form(default=None),
    vehicle_odometer: Optional[str] = Form(default=None),
    vehicle_purchase_date: Optional[str] = Form(default=None),
    photos: List[UploadFile] = File(default=[]),
    documents: List[UploadFile] = File(default=[]),
) -> JSONResponse:
    session = _session(request, session_id)
    uploads = {
        "photos": [_read_upload(f) for f in photos],
        "documents": [_read_upload(f) for f in documents],
    }
    _validate_uploads(request, uploads)

    incident = {
        "incident_type": incident_type,
        "incident_date": incident_date,
        "description": description,
        "location": location,
    }
    vehicle = {
        "make": vehicle_make,
        "model": vehicle_model,
        "year": vehicle_year,
        "vin": vehicle_vin,
        "license_plate": vehicle_license_plate,
        "ownership_status": vehicle_ownership_status,
        "odometer": vehicle_odometer,
        "purchase_date": vehicle_purchase_date,
    }
    claim = await _service(request).submit_claim(
        session, incident, vehicle, _pending(uploads["photos"] + uploads["documents"])
    )
    return _session_payload(session, claim=claim.to_dict())


# Questionnaire

@router.post("/api/intake/sessions/{session_id}/questionnaire/answers")
async def save_answers(session_id: str, body: AnswersRequest, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    _service(request).save_answers(session, body.answers)
    return _session_payload(session)


@router.post("/api/intake/sessions/{session_id}/questionnaire/next")
async def next_step(session_id: str, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    moved = _service(request).next_step(session)
    return _session_payload(session, moved=moved)


@router.post("/api/intake/sessions/{session_id}/questionnaire/back")
async def previous_step(session_id: str, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    moved = _service(request).previous_step(session)
    return _session_payload(session, moved=moved)


@router.post("/api/intake/sessions/{session_id}/questionnaire/goto/{index}")
async def go_to_step(session_id: str, index: int, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    _service(request).go_to_step(session, index)
    return _session_payload(session)


@router.post("/api/intake/sessions/{session_id}/questionnaire/photos")
async def add_photos(
    session_id: str,
    request: Request,
    photos: List[UploadFile] = File(default=[]),
) -> JSONResponse:
    session = _session(request, session_id)
    uploads = [_read_upload(f) for f in photos]
    _validate_uploads(request, {"photos": uploads + [
        StoredUpload(p.filename, p.content_type, p.content, p.size) for p in session.pending_photos
    ]})
    _service(request).add_follow_up_photos(session, _pending(uploads))
    return _session_payload(session)


@router.delete("/api/intake/sessions/{session_id}/questionnaire/photos/{photo_id}")
async def remove_photo(session_id: str, photo_id: str, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    _service(request).remove_follow_up_photo(session, photo_id)
    return _session_payload(session)


@router.post("/api/intake/sessions/{session_id}/questionnaire/submit")
async def submit_follow_up(session_id: str, request: Request) -> JSONResponse:
    session = _session(request, session_id)
    claim = await _service(request).submit_follow_up(session)
    return _session_payload(session, claim=claim.to_dict())


# Insurer dashboard

@router.post("/api/insurer/login")
async def insurer_login(body: LoginRequest, request: Request) -> JSONResponse:
    token = request.app.state.gate.login(body.access_code)
    return JSONResponse({"token": token, "token_type": "bearer"})


@router.get("/api/insurer/claims")
async def list_claims(request: Request, authorization: Optional[str] = Header(default=None)) -> JSONResponse:
    dashboard = _dashboard(request, authorization)
    return JSONResponse(jsonable_encoder({"claims": dashboard.list_claims()}))


@router.get("/api/insurer/claims/{claim_id}")
async def claim_detail(
    claim_id: str, request: Request, authorization: Optional[str] = Header(default=None)
) -> JSONResponse:
    dashboard = _dashboard(request, authorization)
    return JSONResponse(jsonable_encoder(dashboard.claim_detail(claim_id)))


@router.post("/api/insurer/claims/{claim_id}/finalize")
async def refinalize_claim(
    claim_id: str, request: Request, authorization: Optional[str] = Header(default=None)
) -> JSONResponse:
    dashboard = _dashboard(request, authorization)
    summary = await dashboard.refinalize(claim_id)
    return JSONResponse(jsonable_encoder({"claim": summary, "claims": dashboard.snapshot}))


@router.get("/api/insurer/claims/{claim_id}/report.pdf")
async def download_report(
    claim_id: str, request: Request, authorization: Optional[str] = Header(default=None)
) -> Response:
    dashboard = _dashboard(request, authorization)
    pdf = dashboard.export_report(claim_id)
    filename = dashboard.report_filename(claim_id)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/api/insurer/reconcile")
async def reconcile(request: Request, authorization: Optional[str] = Header(default=None)) -> JSONResponse:
    _dashboard(request, authorization)
    report = await request.app.state.sweep.run()
    return JSONResponse(jsonable_encoder(report))


async def _reconciliation_loop(sweep: ReconciliationSweep, interval_minutes: int) -> None:
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            await sweep.run()
        except ClaimsProcessingError as e:
            logger.error(f"Periodic reconciliation failed: {e}")
        except Exception:
            logger.exception("Periodic reconciliation failed unexpectedly")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service on startup unless one was injected; start the periodic sweep if configured."""
    config: Config = app.state.config
    if app.state.service is None:
        try:
            app.state.service = build_intake_service(config)
        except ConfigurationError as e:
            logger.error(f"Service unavailable: {e}")
            app.state.startup_error = e
    if app.state.service is not None and app.state.sweep is None:
        app.state.sweep = ReconciliationSweep(
            app.state.service, app.state.service.store, config.reconciliation.stale_after_minutes
        )

    task = None
    if app.state.sweep is not None and config.reconciliation.interval_minutes > 0:
        task = asyncio.create_task(_reconciliation_loop(app.state.sweep, config.reconciliation.interval_minutes))
        logger.info(f"Reconciliation sweep every {config.reconciliation.interval_minutes} minutes")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
        if app.state.service is not None:
            app.state.service.store.close()


def create_app(
    service: Optional[IntakeService] = None,
    config: Optional[Config] = None,
    gate: Optional[AccessGate] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        service: Pre-built intake service; when None it is built from config at startup
        config: Loaded configuration; when None ``config.yaml`` is read
        gate: Dashboard access gate; defaults to one built from ``config.insurer``
    """
    config = config or Config.load(CONFIG_PATH)
    setup_logging(level=config.logging.level, log_format=config.logging.format, log_file=config.logging.file or None)

    app = FastAPI(title=APP_TITLE, lifespan=lifespan)
    app.state.config = config
    app.state.service = service
    app.state.startup_error = None
    app.state.gate = gate if gate is not None else AccessGate(config.insurer.access_code, config.insurer.token_ttl_minutes)
    app.state.sweep = (
        ReconciliationSweep(service, service.store, config.reconciliation.stale_after_minutes) if service else None
    )

    @app.middleware("http")
    async def reset_log_context(request: Request, call_next):
        clear_context()
        return await call_next(request)

    @app.exception_handler(ClaimsProcessingError)
    async def processing_error_handler(request: Request, exc: ClaimsProcessingError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
