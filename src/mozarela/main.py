"""FastAPI application entry point."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import Body, Depends, FastAPI, File, Form, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dotenv import load_dotenv
load_dotenv()

from mozarela.api import admin as admin_ops
from mozarela.api import backup as backup_ops
from mozarela.api import cases as case_crud
from mozarela.api import sessions as session_store
from mozarela.api import users as user_crud
from mozarela.api.auth import (
    get_current_session,
    require_admin,
    require_admin_csrf,
    require_csrf,
    resolve_session_token,
)
from mozarela.api.ratelimit import client_ip, limit_requests, login_limiter
from mozarela.config import settings
from mozarela.database import engine, get_db, init_models
from mozarela.exceptions import AppError, ProviderNotConfigured, ValidationFailed
from mozarela.models.item import Item
from mozarela.models.session import Session
from mozarela.schemas.case import CaseResponse, CaseSave
from mozarela.schemas.scoring import CaseInput, DiagnosisResponse
from mozarela.schemas.session import RefreshResponse, SessionResponse
from mozarela.schemas.user import AuthResponse, UserLogin, UserRegister, UserResponse, UserUpdate
from mozarela.services import scoring
from mozarela.services.ai import AIClient, FilePart, ai_client, parse_json_text
from mozarela.services.sweeper import run_sweep, sweep_forever

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    logger.info("Mozarela API starting up...")
    await init_models()

    await run_sweep()
    sweeper = asyncio.create_task(sweep_forever(settings.session_sweep_interval_seconds))
    try:
        yield
    finally:
        logger.info("Mozarela API shutting down...")
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await engine.dispose()


app = FastAPI(
    title="Mozarela API",
    description="Veterinary clinical decision support backend",
    version="0.1.0",
    lifespan=lifespan,
    dependencies=[Depends(limit_requests)],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.allowed_origin] if settings.allowed_origin else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_ai_client() -> AIClient:
    return ai_client


def set_session_cookie(response: Response, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite=settings.cookie_samesite,
        secure=settings.secure_cookies,
    )


# ============================================================================
# Error handling
# ============================================================================

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.status_code == 429 and exc.details.get("retry_after"):
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "mozarela-api", "now": int(time.time() * 1000)}


# ============================================================================
# Auth Endpoints
# ============================================================================

@app.post("/api/auth/register", response_model=AuthResponse)
async def register(
    payload: UserRegister,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Create an account and log it in."""
    user = await user_crud.register_user(db, payload)
    session = await session_store.create_session(db, user.id)
    await db.commit()

    set_session_cookie(response, session)
    return AuthResponse(
        token=session.token,
        csrf_token=session.csrf_token,
        expires_at=session.expires_at,
        user=UserResponse.from_user(user),
    )


@app.post("/api/auth/login", response_model=AuthResponse)
async def login(
    payload: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange email + password for a session and CSRF token.
    Only failed attempts count towards the per-IP login limit.
    """
    limiter_key = client_ip(request)
    login_limiter.check(limiter_key, "Too many login attempts, please try again later")

    user = await user_crud.authenticate(db, payload.email, payload.password)
    session = await session_store.create_session(db, user.id)
    await db.commit()
    login_limiter.forget_last(limiter_key)
    logger.info("User %s logged in", user.id)

    set_session_cookie(response, session)
    return AuthResponse(
        token=session.token,
        csrf_token=session.csrf_token,
        expires_at=session.expires_at,
        user=UserResponse.from_user(user),
    )


@app.post("/api/auth/logout")
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Destroy the caller's session if there is one. Always succeeds."""
    token = resolve_session_token(request)
    if token:
        await session_store.destroy_session(db, token)
        await db.commit()
    response.delete_cookie(settings.session_cookie_name)
    return {"success": True}


@app.get("/api/me", response_model=UserResponse)
async def get_me(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    user = await user_crud.require_user(db, session.user_id)
    return UserResponse.from_user(user)


@app.put("/api/me", response_model=UserResponse)
async def update_me(
    payload: UserUpdate,
    session: Session = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
):
    """Update the caller's profile, including the saved scoring protocol."""
    user = await user_crud.require_user(db, session.user_id)
    user = await user_crud.update_profile(db, user, payload)
    await db.commit()
    return UserResponse.from_user(user)


@app.get("/api/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    user = await user_crud.require_user(db, user_id)
    return UserResponse.from_user(user)


# ============================================================================
# Session Endpoints
# ============================================================================

@app.post("/api/sessions/refresh", response_model=RefreshResponse)
async def refresh_session(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Push the caller's session expiry out to now + TTL."""
    session = await session_store.refresh_session(db, resolve_session_token(request))
    await db.commit()
    set_session_cookie(response, session)
    return RefreshResponse(expires_at=session.expires_at)


@app.get("/api/sessions/{token}", response_model=SessionResponse)
async def resolve_session(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    """Session metadata for a token (the CSRF token is not included)."""
    session = await session_store.validate_session(db, token)
    await db.commit()
    return SessionResponse.from_session(session)


@app.delete("/api/sessions/{token}")
async def delete_session(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    await session_store.destroy_session(db, token)
    await db.commit()
    return {"success": True}


# ============================================================================
# Case Endpoints
# ============================================================================

@app.get("/api/cases", response_model=list[CaseResponse])
async def list_cases(
    session: Session = Depends(get_current_session),
    db: AsyncSession = Depends(get_db),
):
    """The caller's case history, newest first."""
    cases = await case_crud.list_cases(db, session.user_id)
    return [CaseResponse.from_case(c) for c in cases]


@app.post("/api/cases")
async def save_case(
    payload: CaseSave,
    session: Session = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
):
    case = await case_crud.save_case(db, session.user_id, payload)
    await db.commit()
    return {"success": True, "id": case.id}


@app.delete("/api/cases/{case_id}")
async def delete_case(
    case_id: str,
    session: Session = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
):
    await case_crud.delete_case(db, session.user_id, case_id)
    await db.commit()
    return {"success": True}


# ============================================================================
# Weighted Scoring Endpoints
# ============================================================================

@app.get("/api/score/template", response_class=PlainTextResponse)
async def scoring_template():
    """Example protocol CSV."""
    return PlainTextResponse(
        scoring.template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="protocol-template.csv"'},
    )


@app.post("/api/score", response_model=DiagnosisResponse)
async def score_case(
    clinical_signs: str = Form(...),
    species: str = Form("Other"),
    breed: Optional[str] = Form(None),
    age: Optional[str] = Form(None),
    weight: Optional[str] = Form(None),
    lab_findings: Optional[str] = Form(None),
    patient_name: Optional[str] = Form(None),
    scoring_file: Optional[UploadFile] = File(None),
    session: Session = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
    ai: AIClient = Depends(get_ai_client),
):
    """
    Rank the protocol's conditions against the clinical signs.
    Uses the uploaded protocol, or the one saved on the caller's profile.
    """
    if scoring_file is not None and scoring_file.filename:
        raw = await scoring_file.read()
        source_name = scoring_file.filename
        try:
            protocol_text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationFailed("Scoring file must be UTF-8 text")
    else:
        user = await user_crud.require_user(db, session.user_id)
        saved = user.saved_scoring_config or {}
        if not saved.get("content"):
            raise ValidationFailed("No scoring file provided")
        protocol_text = saved["content"]
        source_name = saved.get("fileName") or "saved protocol"

    case = CaseInput(
        patient_name=patient_name,
        species=species,
        breed=breed,
        age=age,
        weight=weight,
        clinical_signs=clinical_signs,
        lab_findings=lab_findings,
    )
    return await scoring.analyze_with_scoring(protocol_text, case, source_name, ai)


# ============================================================================
# AI Proxy Endpoints
# ============================================================================

@app.post("/api/analyze")
async def analyze(
    prompt: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    session: Session = Depends(require_csrf),
    ai: AIClient = Depends(get_ai_client),
):
    """Forward a prompt and attachments to the provider; JSON output is parsed when possible."""
    if not ai.configured:
        raise ProviderNotConfigured("Server AI key not configured")
    if not prompt:
        raise ValidationFailed("prompt required")

    parts = []
    for upload in files or []:
        parts.append(FilePart(
            data=await upload.read(),
            mime_type=upload.content_type or "application/octet-stream",
            filename=upload.filename or "attachment",
        ))

    text = await ai.generate(prompt, files=parts)
    if not text:
        logger.warning("AI returned no text")
        return {"text": ""}

    parsed = parse_json_text(text)
    if parsed is not None:
        return {"parsed": parsed}
    logger.warning("AI response was not JSON, returning raw text")
    return {"text": text}


@app.get("/api/models")
async def list_models(
    session: Session = Depends(get_current_session),
    ai: AIClient = Depends(get_ai_client),
):
    """Models available to the server's key."""
    return {"models": await ai.list_models()}


# ============================================================================
# Admin Endpoints
# ============================================================================

@app.get("/api/admin/stats")
async def admin_stats(
    session: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_ops.get_stats(db)


@app.get("/api/admin/users", response_model=list[UserResponse])
async def admin_list_users(
    session: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return [UserResponse.from_user(u) for u in await admin_ops.list_users(db)]


@app.get("/api/admin/cases")
async def admin_list_cases(
    session: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_ops.list_all_cases(db)


@app.delete("/api/admin/users/{user_id}")
async def admin_delete_user(
    user_id: str,
    session: Session = Depends(require_admin_csrf),
    db: AsyncSession = Depends(get_db),
):
    """Delete a user, their sessions and their cases."""
    await admin_ops.delete_user(db, session.user_id, user_id)
    await db.commit()
    return {"success": True}


@app.delete("/api/admin/cases/{case_id}")
async def admin_delete_case(
    case_id: str,
    session: Session = Depends(require_admin_csrf),
    db: AsyncSession = Depends(get_db),
):
    await admin_ops.delete_any_case(db, case_id)
    await db.commit()
    return {"success": True}


@app.patch("/api/admin/users/{user_id}/toggle-admin")
async def admin_toggle_admin(
    user_id: str,
    session: Session = Depends(require_admin_csrf),
    db: AsyncSession = Depends(get_db),
):
    is_admin = await admin_ops.toggle_admin(db, session.user_id, user_id)
    await db.commit()
    return {"success": True, "isAdmin": is_admin}


@app.get("/api/admin/backup")
async def admin_backup(
    session: Session = Depends(require_admin),
):
    """Download the SQLite database file."""
    path = admin_ops.sqlite_database_file()
    filename = f"mozarela-backup-{int(time.time() * 1000)}.db"
    return FileResponse(path, media_type="application/x-sqlite3", filename=filename)


# ============================================================================
# Export / Import Endpoints
# ============================================================================

@app.get("/api/export")
async def export_data(
    session: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await backup_ops.export_data(db)


@app.post("/api/import")
async def import_data(
    backup: Any = Body(None),
    session: Session = Depends(require_admin_csrf),
    db: AsyncSession = Depends(get_db),
):
    """Best-effort restore from an export document."""
    return await backup_ops.import_data(db, backup)


# ============================================================================
# Legacy Item Endpoints
# ============================================================================

@app.get("/api/items")
async def list_items(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Item).order_by(Item.id))
    return [{"id": i.id, "name": i.name} for i in result.scalars()]


@app.post("/api/items")
async def create_item(
    body: dict = Body(...),
    db: AsyncSession = Depends(get_db),
):
    name = body.get("name")
    if not name:
        raise ValidationFailed("name required")
    db.add(Item(name=str(name)))
    await db.commit()
    return {"success": True}
