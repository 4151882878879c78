"""
FastAPI application for the MedScribe service.

The service stores users, patients and visits, authenticates clinicians,
turns visit transcripts into structured notes through the configured
completion deployment and issues short lived speech service tokens.

Storage and collaborators are module level so tests can rebind them with
:func:`configure` before the application starts.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Literal, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog.contextvars import bind_contextvars, unbind_contextvars

from medscribe import __version__
from medscribe.auth import create_access_token, decode_access_token
from medscribe.config import SERVICE_NAME, get_settings
from medscribe.errors import (
    AuthenticationFailed,
    AuthError,
    EntityNotFound,
    MedScribeError,
    PermissionDenied,
    ValidationError,
)
from medscribe.notes import NoteGenerator
from medscribe.openai_client import AzureChatClient
from medscribe.patients import PATIENTS_TABLE, PatientRepository, filter_patients
from medscribe.roles import Action, ensure_valid_role, has_permission, resolve_display_name
from medscribe.speech import CACHE_SECONDS, SpeechTokenService
from medscribe.table_store import TableStore, create_engine, ping
from medscribe.time_utils import isoformat_z, utc_now
from medscribe.users import USERS_TABLE, UserRepository
from medscribe.visits import VISITS_TABLE, VisitRepository

LOG_LEVEL = get_settings().log_level
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(message)s")

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

_TRACE_ID_CTX: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)

REQUEST_COUNTER = Counter(
    "medscribe_http_requests_total",
    "HTTP requests by method, route and status",
    ("method", "route", "status"),
)
REQUEST_LATENCY = Histogram(
    "medscribe_http_request_seconds",
    "HTTP request latency by method and route",
    ("method", "route"),
)
LOGIN_ATTEMPTS = Counter(
    "medscribe_login_attempts_total",
    "Login attempts by outcome",
    ("outcome",),
)

# ---------------------------------------------------------------------------
# Storage and collaborators
# ---------------------------------------------------------------------------

engine: Optional[Engine] = None
users_repo: Optional[UserRepository] = None
patients_repo: Optional[PatientRepository] = None
visits_repo: Optional[VisitRepository] = None
note_generator: Optional[NoteGenerator] = None
speech_tokens: Optional[SpeechTokenService] = None


def configure(
    *,
    db_engine: Optional[Engine] = None,
    chat_client: Optional[AzureChatClient] = None,
    speech_service: Optional[SpeechTokenService] = None,
) -> None:
    """Bind storage and collaborators, building defaults from settings."""

    global engine, users_repo, patients_repo, visits_repo, note_generator, speech_tokens

    engine = db_engine or create_engine()
    users_repo = UserRepository(TableStore(engine, USERS_TABLE))
    visits_repo = VisitRepository(TableStore(engine, VISITS_TABLE))
    patients_repo = PatientRepository(TableStore(engine, PATIENTS_TABLE), visits=visits_repo)
    note_generator = NoteGenerator(chat_client or AzureChatClient.from_settings())
    speech_tokens = speech_service or SpeechTokenService.from_settings()


def reset() -> None:
    global engine, users_repo, patients_repo, visits_repo, note_generator, speech_tokens

    engine = users_repo = patients_repo = visits_repo = note_generator = speech_tokens = None


START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - exercised indirectly in integration
    logger.info("lifespan_startup")
    if engine is None:
        configure()
    users_repo.ensure_bootstrap_admin()
    try:
        yield
    finally:
        logger.info("lifespan_shutdown_complete", uptime=round(time.time() - START_TIME, 2))


app = FastAPI(title="MedScribe API", version=__version__, lifespan=lifespan)

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Details describing an error response payload."""

    code: int | str | None = None
    message: str
    details: Any | None = None

    model_config = {"extra": "allow"}


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    success: Literal[False] = False
    error: ErrorDetail


_ERROR_MESSAGE_KEYS: Tuple[str, ...] = ("message", "detail", "error", "msg")


def _build_error_response(payload: Any, status_code: int | None = None) -> ErrorResponse:
    """Normalize ``payload`` into the standard :class:`ErrorResponse` structure."""

    code: int | str | None = status_code
    message = "An error occurred"
    details: Any | None = None

    if isinstance(payload, dict):
        if payload.get("code") not in (None, ""):
            code = payload["code"]
        details = payload.get("details")
        for key in _ERROR_MESSAGE_KEYS:
            if payload.get(key) not in (None, ""):
                message = str(payload[key])
                break
    elif isinstance(payload, list):
        rendered = [str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in payload]
        if rendered:
            message = "; ".join(rendered)
        details = payload
    elif payload not in (None, ""):
        message = str(payload)

    error_payload: Dict[str, Any] = {"message": message}
    if code is not None:
        error_payload["code"] = code
    if details is not None:
        error_payload["details"] = details
    return ErrorResponse(error=ErrorDetail(**error_payload))


def _error_code(exc: MedScribeError) -> int | str:
    kind = getattr(exc, "kind", None)
    if kind is None:
        return exc.status_code
    return getattr(kind, "value", kind)


@app.exception_handler(MedScribeError)
async def medscribe_error_handler(request: Request, exc: MedScribeError) -> JSONResponse:
    """Render domain errors with their status and the standard envelope."""

    if exc.status_code >= 500:
        logger.error("request_error", error=exc.message, status=exc.status_code, kind=_error_code(exc))
    payload = _build_error_response(
        {"code": _error_code(exc), "message": exc.message, "details": exc.details},
        status_code=exc.status_code,
    )
    headers = dict(getattr(exc, "headers", None) or {})
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Convert ``HTTPException`` instances into the standard error envelope."""

    error_payload = _build_error_response(exc.detail, status_code=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload.model_dump(),
        headers=dict(exc.headers or {}),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or malformed request fields are reported as 400."""

    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    payload = _build_error_response(errors, status_code=status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=payload.model_dump())


@app.middleware("http")
async def track_http_metrics(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    route_path = getattr(route, "path", "unmatched")
    REQUEST_COUNTER.labels(request.method, route_path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, route_path).observe(time.perf_counter() - start)
    return response


@app.middleware("http")
async def inject_trace_id(request: Request, call_next):
    """Attach or propagate a trace identifier for each request."""

    trace_id = request.headers.get("x-trace-id") or uuid.uuid4().hex
    token = _TRACE_ID_CTX.set(trace_id)
    bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
    request.state.trace_id = trace_id
    try:
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception("unhandled_error", error=str(exc))
            error_payload = _build_error_response("Internal server error", status_code=500)
            response = JSONResponse(status_code=500, content=error_payload.model_dump())
        response.headers["X-Trace-Id"] = trace_id
        return response
    finally:
        try:
            unbind_contextvars("trace_id", "path", "method")
        except LookupError:  # pragma: no cover - defensive cleanup
            pass
        _TRACE_ID_CTX.reset(token)


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """Decode the bearer token and confirm the account is still active."""

    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    try:
        data = decode_access_token(credentials.credentials)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    try:
        stored = users_repo.get_user(data.get("uid") or data.get("sub"))
    except EntityNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user") from None
    if stored.get("isActive") is False:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is disabled")
    data["role"] = ensure_valid_role(stored).value
    return data


def require_permission(*actions: Action):
    """Dependency factory ensuring the current user holds any of ``actions``."""

    def checker(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if not any(has_permission(user.get("role"), action) for action in actions):
            logger.info("permission_denied", user=user.get("sub"), role=user.get("role"))
            raise PermissionDenied()
        return user

    return checker


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class UserCreate(BaseModel):
    username: str
    password: str
    name: str
    email: Optional[str] = None
    role: str = "doctor"
    specialty: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    specialty: Optional[str] = None
    isActive: Optional[bool] = None
    password: Optional[str] = None


class PasswordChange(BaseModel):
    newPassword: str
    currentPassword: Optional[str] = None


class PatientPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class VisitCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    patientId: Optional[str] = None
    transcript: str = ""
    notes: str = ""
    noteType: Optional[str] = None
    specialty: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None


class VisitUpdate(BaseModel):
    transcript: Optional[str] = None
    notes: Optional[str] = None
    noteType: Optional[str] = None
    specialty: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None


class GenerateNotesRequest(BaseModel):
    transcript: str = ""
    patientId: Optional[str] = None
    trainingConfig: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------


@app.get("/health", tags=["system"])
def health() -> Dict[str, Any]:
    """Lightweight health check with uptime and database connectivity."""

    return {
        "status": "ok",
        "timestamp": isoformat_z(utc_now()),
        "service": SERVICE_NAME,
        "version": __version__,
        "uptime": round(time.time() - START_TIME, 2),
        "db": bool(engine is not None and ping(engine)),
    }


@app.get("/metrics", tags=["system"], response_model=None)
def metrics(user=Depends(require_permission(Action.VIEW_ANALYTICS))) -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@app.post("/users/login", tags=["users"])
@app.post("/users/validate", tags=["users"], include_in_schema=False)
def login(body: Optional[LoginRequest] = None) -> Dict[str, Any]:
    body = body or LoginRequest()
    try:
        user = users_repo.authenticate(body.username, body.password)
    except AuthenticationFailed as exc:
        LOGIN_ATTEMPTS.labels(outcome=exc.kind.value).inc()
        raise
    except ValidationError:
        LOGIN_ATTEMPTS.labels(outcome="invalid_request").inc()
        raise
    user["role"] = ensure_valid_role(user).value
    user["name"] = resolve_display_name(user)
    token = create_access_token(user)
    LOGIN_ATTEMPTS.labels(outcome="success").inc()
    logger.info("login_succeeded", user=user["id"], role=user["role"])
    return {"success": True, "token": token, "user": user}


@app.get("/users", tags=["users"])
def list_users(
    limit: int = Query(100, ge=1, le=100),
    user=Depends(require_permission(Action.MANAGE_USERS)),
) -> List[Dict[str, Any]]:
    return users_repo.list_users(limit=limit)


@app.get("/users/{user_id}", tags=["users"])
def get_user(user_id: str, user=Depends(require_permission(Action.MANAGE_USERS))) -> Dict[str, Any]:
    return users_repo.get_user(user_id)


@app.post("/users", tags=["users"], status_code=status.HTTP_201_CREATED)
def create_user(body: UserCreate, user=Depends(require_permission(Action.ADD_USERS))) -> Dict[str, Any]:
    return users_repo.create_user(body.model_dump(), created_by=user.get("uid"))


@app.put("/users/{user_id}", tags=["users"])
def update_user(
    user_id: str, body: UserUpdate, user=Depends(require_permission(Action.EDIT_USERS))
) -> Dict[str, Any]:
    return users_repo.update_user(user_id, body.model_dump(exclude_unset=True))


@app.delete("/users/{user_id}", tags=["users"], status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, user=Depends(require_permission(Action.DELETE_USERS))) -> Response:
    users_repo.deactivate_user(user_id, acting_user_id=user.get("uid"))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/users/{user_id}/password", tags=["users"])
def change_password(
    user_id: str, body: PasswordChange, user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    is_self = str(user_id).lower() == str(user.get("uid")).lower()
    if not is_self and not has_permission(user.get("role"), Action.MANAGE_USERS):
        raise PermissionDenied()
    users_repo.change_password(
        user_id, body.newPassword, old_password=body.currentPassword, require_old=is_self
    )
    return {"success": True}


# ---------------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------------


@app.get("/patients", tags=["patients"])
def list_patients(
    limit: int = Query(100, ge=1, le=100),
    search: Optional[str] = None,
    user=Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return filter_patients(patients_repo.list_patients(limit=limit), search)


@app.get("/patients/{patient_id}", tags=["patients"])
def get_patient(patient_id: str, user=Depends(get_current_user)) -> Dict[str, Any]:
    return patients_repo.get_patient(patient_id)


@app.post("/patients", tags=["patients"])
def create_patient(
    body: PatientPayload, user=Depends(require_permission(Action.ADD_PATIENTS))
) -> Dict[str, Any]:
    return patients_repo.create_patient(body.model_dump(), created_by=user.get("uid"))


@app.put("/patients/{patient_id}", tags=["patients"])
def update_patient(
    patient_id: str, body: PatientPayload, user=Depends(require_permission(Action.EDIT_PATIENTS))
) -> Dict[str, Any]:
    return patients_repo.update_patient(patient_id, body.model_dump())


@app.delete("/patients/{patient_id}", tags=["patients"], status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(patient_id: str, user=Depends(require_permission(Action.DELETE_PATIENTS))) -> Response:
    patients_repo.delete_patient(patient_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Visits
# ---------------------------------------------------------------------------


def _is_owner(user: Dict[str, Any], visit: Dict[str, Any]) -> bool:
    return str(visit.get("createdBy") or "") == str(user.get("uid") or "")


def _check_visit_access(user: Dict[str, Any], visit: Dict[str, Any], all_action: Action, own_action: Action) -> None:
    role = user.get("role")
    if has_permission(role, all_action):
        return
    if has_permission(role, own_action) and _is_owner(user, visit):
        return
    raise PermissionDenied()


@app.get("/visits", tags=["visits"])
def list_visits(
    patientId: str = Query(...),
    limit: int = Query(100, ge=1, le=100),
    user=Depends(require_permission(Action.READ_ALL_NOTES, Action.READ_OWN_NOTES)),
) -> List[Dict[str, Any]]:
    visits = visits_repo.list_visits(patientId, limit=None)
    if not has_permission(user.get("role"), Action.READ_ALL_NOTES):
        visits = [v for v in visits if _is_owner(user, v)]
    return visits[:limit]


@app.get("/visits/{visit_id}", tags=["visits"])
def get_visit(
    visit_id: str,
    patientId: str = Query(...),
    user=Depends(require_permission(Action.READ_ALL_NOTES, Action.READ_OWN_NOTES)),
) -> Dict[str, Any]:
    visit = visits_repo.get_visit(patientId, visit_id)
    _check_visit_access(user, visit, Action.READ_ALL_NOTES, Action.READ_OWN_NOTES)
    return visit


@app.post("/visits", tags=["visits"])
def create_visit(body: VisitCreate, user=Depends(require_permission(Action.SCRIBE))) -> Dict[str, Any]:
    if not body.patientId:
        raise ValidationError("patientId is required")
    patients_repo.get_patient(body.patientId)
    return visits_repo.create_visit(
        body.model_dump(), created_by=user.get("uid"), created_by_name=user.get("name")
    )


@app.put("/visits/{visit_id}", tags=["visits"])
def update_visit(
    visit_id: str,
    body: VisitUpdate,
    patientId: str = Query(...),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    visit = visits_repo.get_visit(patientId, visit_id)
    _check_visit_access(user, visit, Action.EDIT_ALL_NOTES, Action.EDIT_OWN_NOTES)
    return visits_repo.update_visit(patientId, visit_id, body.model_dump(exclude_unset=True))


@app.delete("/visits/{visit_id}", tags=["visits"], status_code=status.HTTP_204_NO_CONTENT)
def delete_visit(
    visit_id: str,
    patientId: str = Query(...),
    user: Dict[str, Any] = Depends(get_current_user),
) -> Response:
    visit = visits_repo.get_visit(patientId, visit_id)
    _check_visit_access(user, visit, Action.DELETE_ALL_NOTES, Action.DELETE_OWN_NOTES)
    visits_repo.delete_visit(patientId, visit_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Note generation and speech
# ---------------------------------------------------------------------------


@app.post("/generate-notes", tags=["notes"])
def generate_notes(
    body: GenerateNotesRequest, user: Dict[str, Any] = Depends(require_permission(Action.SCRIBE))
) -> Dict[str, Any]:
    """Generate a structured note from ``transcript``.

    The patient, when given, is loaded with its three most recent visits.
    """

    patient: Optional[Dict[str, Any]] = None
    if body.patientId:
        patient = dict(patients_repo.get_patient(body.patientId))
        patient["visits"] = visits_repo.recent_visits(body.patientId)
    notes = note_generator.generate(body.transcript, patient, body.trainingConfig, role=user.get("role"))
    return {"notes": notes}


@app.get("/speech-token", tags=["speech"])
def speech_token(response: Response, user=Depends(require_permission(Action.SCRIBE))) -> Dict[str, Any]:
    payload = speech_tokens.get_token()
    response.headers["Cache-Control"] = f"private, max-age={CACHE_SECONDS}"
    logger.info("speech_token_served", user=user.get("sub"), role=user.get("role"))
    return payload


@app.delete("/speech-token/cache", tags=["speech"])
def clear_speech_cache(user=Depends(require_permission(Action.MANAGE_USERS))) -> Dict[str, Any]:
    speech_tokens.clear()
    return {"message": "Cache cleared successfully", "timestamp": isoformat_z(utc_now())}


@app.get("/speech-health", tags=["speech"])
def speech_health() -> JSONResponse:
    body = speech_tokens.health()
    code = status.HTTP_200_OK if body.get("status") == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=body)


__all__ = ["app", "configure", "reset", "get_current_user", "require_permission"]
