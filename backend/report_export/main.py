import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from report_export import __version__
from report_export.config import Settings, get_settings
from report_export.core import (
    EXPORT_REQUEST,
    MEDIA_TYPES,
    EmergencyModeRequest,
    ExportCreated,
    ExportStatus,
    ExportSummary,
    UploadAccepted,
)
from report_export.error_handlers import register_error_handlers
from report_export.errors import CacheMiss, ResultNotReady
from report_export.middleware_logging import configure_logging, register_request_logging
from report_export.models import ExportKind, JobStatus
from report_export.runtime import Services, build_services
from report_export.services.renderer import Renderer

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def optional_user(x_user_id: Optional[str] = Header(default=None)) -> Optional[str]:
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return None


async def require_admin(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None),
    user_id: Optional[str] = Depends(optional_user),
    services: Services = Depends(get_services),
) -> None:
    # counted before the token check, failed attempts included
    services.rate_limiter.admit_admin(get_remote_address(request), user_id)
    expected = services.settings.admin_token
    if not expected or not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Admin token required")


# ---- default ------------------------------------------------------------


@router.get("/", tags=["default"])
def root():
    return {"status": "ok", "service": "Report Export Service", "docs": "/docs"}


@router.get("/health", tags=["default"])
async def health(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "ok": True,
        "env": settings.env,
        "rate_limit_enabled": settings.is_prod,
        "emergency_mode": services.rate_limiter.emergency_mode,
        "jobs": services.jobs.counts(),
        "cache": services.cache.stats(),
    }


@router.get("/ready", tags=["default"])
async def ready(services: Services = Depends(get_services)):
    stopped = [task.name for task in services.tasks if not task.running]
    if stopped:
        return JSONResponse(status_code=503, content={"status": "starting", "stopped": stopped})
    return {"status": "ready"}


@router.get("/metrics", tags=["default"])
def metrics_endpoint():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---- exports ------------------------------------------------------------


@router.post("/exports", status_code=201, response_model=ExportCreated, tags=["exports"])
async def create_export(
    payload: Dict[str, Any] = Body(...),
    owner_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    try:
        export = EXPORT_REQUEST.validate_python(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False, include_context=False))

    with services.rate_limiter.admit_job_creation(owner_id) as slot:
        job = services.jobs.create(owner_id, ExportKind(export.kind), export.format, export.options)
        slot.hand_off()
    return ExportCreated(job_id=job.id)


@router.get("/exports", response_model=List[ExportSummary], tags=["exports"])
async def list_exports(owner_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return [
        ExportSummary(
            job_id=job.id,
            kind=job.kind,
            format=job.format,
            status=job.status,
            progress=job.progress,
            created_at=job.created_at,
            completed_at=job.completed_at,
            expires_at=job.expires_at,
        )
        for job in services.jobs.list_for_owner(owner_id)
    ]


@router.get(
    "/exports/{job_id}/status",
    response_model=ExportStatus,
    response_model_exclude_none=True,
    tags=["exports"],
)
async def export_status(
    job_id: str,
    request: Request,
    owner_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    job = services.jobs.get_owned(job_id, owner_id)
    out = ExportStatus(status=job.status, progress=job.progress)
    if job.status is JobStatus.COMPLETED:
        out.download_url = str(request.app.url_path_for("download_export", job_id=job.id))
        out.file_name = job.result_file_name
        out.file_size = job.result_file_size
    elif job.status is JobStatus.FAILED:
        out.error = job.error_message
    return out


@router.get("/exports/{job_id}/download", name="download_export", tags=["exports"])
async def download_export(
    job_id: str,
    owner_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    job = services.jobs.get_owned(job_id, owner_id)
    if job.status is not JobStatus.COMPLETED or not job.result_key:
        raise ResultNotReady()

    entry = services.cache.get(job.result_key)
    if entry is None:
        raise CacheMiss()

    return Response(
        content=entry.payload,
        media_type=entry.content_type or MEDIA_TYPES[job.format],
        headers={"Content-Disposition": f'attachment; filename="{job.result_file_name}"'},
    )


@router.delete("/exports/{job_id}", status_code=204, tags=["exports"])
async def delete_export(
    job_id: str,
    owner_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    services.jobs.delete(job_id, owner_id)
    return Response(status_code=204)


# ---- uploads ------------------------------------------------------------


def _declared_length(request: Request) -> Optional[int]:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Content-Length header")


@router.post("/uploads", status_code=201, response_model=UploadAccepted, tags=["uploads"])
async def upload(
    request: Request,
    user_id: Optional[str] = Depends(optional_user),
    services: Services = Depends(get_services),
):
    ip = get_remote_address(request)
    limiter = services.rate_limiter

    with limiter.admit_upload(ip, user_id, _declared_length(request)) as slot:
        file_path = Path(services.settings.upload_dir) / f"{slot.upload_id}.bin"
        size = 0
        try:
            with open(file_path, "wb") as f:
                async for chunk in request.stream():
                    size += len(chunk)
                    limiter.check_payload_size(size, ip=ip, user_id=user_id)
                    f.write(chunk)
        except BaseException:
            file_path.unlink(missing_ok=True)
            raise

    return UploadAccepted(upload_id=slot.upload_id, size=size)


# ---- admin --------------------------------------------------------------


@router.post("/admin/emergency-mode", dependencies=[Depends(require_admin)], tags=["admin"])
async def set_emergency_mode(body: EmergencyModeRequest, services: Services = Depends(get_services)):
    services.rate_limiter.set_emergency_mode(body.enabled)
    return {"emergencyMode": services.rate_limiter.emergency_mode}


@router.get("/admin/rate-limits", dependencies=[Depends(require_admin)], tags=["admin"])
async def rate_limit_status(
    ip: Optional[str] = Query(default=None),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    services: Services = Depends(get_services),
):
    return services.rate_limiter.status(ip=ip, user_id=user_id)


# ---- app factory --------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    renderer: Optional[Renderer] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.is_prod)
    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)

    services = build_services(settings, renderer=renderer, clock=clock or time.time)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(title="Report Export Service", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.http_rate_limit] if settings.is_prod else [],
    )
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_request_logging(app)
    register_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
