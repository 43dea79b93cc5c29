from datetime import datetime, timedelta, timezone
from typing import List, Optional
from contextlib import asynccontextmanager
import time
import logging
import math
from pathlib import Path

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, status, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import func, text, or_
from sqlalchemy.orm import Session, joinedload

from . import auth, models, schemas
from .activities import record_activity, relative_time
from .assistant import AssistantError, AssistantNotConfigured, complete_chat
from .config import settings
from .database import engine, get_db
from .email_service import send_email_async
from .email_templates import render_cancellation_email, render_registration_email
from .logging_utils import configure_logging, RequestIdMiddleware, log_event, log_warning
from .models import ACTIVE_REGISTRATION_STATUSES, RegistrationStatus
from .recommendation_store import events_with_attendees, normalize_dt
from .recommender import get_recommended_events, load_preferences
from .tickets import build_ticket_payload, render_ticket_png

configure_logging()


def _run_migrations():
    """Run Alembic migrations to latest head. Controlled via settings.auto_run_migrations."""
    try:
        from alembic import command
        from alembic.config import Config
        base_dir = Path(__file__).resolve().parent.parent
        alembic_ini = base_dir / 'alembic.ini'
        if not alembic_ini.exists():
            logging.warning('alembic.ini not found; skipping migrations')
            return
        cfg = Config(str(alembic_ini))
        cfg.set_main_option('script_location', str(base_dir / 'alembic'))
        command.upgrade(cfg, 'head')
        logging.info('Migrations applied to head')
    except Exception:
        logging.exception('Failed to run migrations on startup')


def _check_configuration():
    if not settings.database_url:
        raise RuntimeError('DATABASE_URL is required')
    if not settings.secret_key:
        raise RuntimeError('SECRET_KEY is required')
    if settings.email_enabled and (not settings.smtp_host or not settings.smtp_sender):
        logging.warning('Email enabled but SMTP host/sender missing; disabling email sending')
        settings.email_enabled = False


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _check_configuration()
    if getattr(settings, "auto_run_migrations", False):
        _run_migrations()
    elif settings.auto_create_tables:
        models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Community Event Hub API", version="1.0.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total else 0


def _check_pagination(page: int, page_size: int) -> None:
    if page < 1:
        raise HTTPException(status_code=400, detail="Page must be at least 1.")
    if page_size < 1 or page_size > 100:
        raise HTTPException(status_code=400, detail="Page size must be between 1 and 100.")


def _active_registrations_count(db: Session, event_id: int) -> int:
    return (
        db.query(func.count(models.Registration.id))
        .filter(
            models.Registration.event_id == event_id,
            models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
        )
        .scalar()
        or 0
    )


def _serialize_event(event: models.Event, attendees: int) -> schemas.EventResponse:
    creator_name = None
    if event.creator:
        creator_name = event.creator.name or event.creator.email
    return schemas.EventResponse(
        id=event.id,
        title=event.title,
        description=event.description,
        category=event.category,
        date=normalize_dt(event.date),
        time=event.time,
        location=event.location,
        image_url=event.image_url,
        capacity=event.capacity,
        created_by=event.created_by,
        creator_name=creator_name,
        attendees=int(attendees or 0),
        created_at=normalize_dt(event.created_at),
    )


def _serialize_admin_event(event: models.Event, attendees: int) -> schemas.AdminEventSummary:
    return schemas.AdminEventSummary(
        id=event.id,
        title=event.title,
        category=event.category,
        date=normalize_dt(event.date),
        time=event.time,
        location=event.location,
        attendees=int(attendees or 0),
        created_at=normalize_dt(event.created_at),
    )


def _get_event_or_404(db: Session, event_id: int) -> models.Event:
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found.")
    return event


def _get_visible_registration(db: Session, registration_id: int, user: models.User) -> models.Registration:
    registration = (
        db.query(models.Registration)
        .options(joinedload(models.Registration.event), joinedload(models.Registration.user))
        .filter(models.Registration.id == registration_id)
        .first()
    )
    if not registration or (registration.user_id != user.id and not auth.is_admin(user)):
        raise HTTPException(status_code=404, detail="Registration not found.")
    return registration


@app.post("/register", response_model=schemas.Token)
def register(user: schemas.UserRegister, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("register", request=request, identifier=user.email.lower())
    db_user = db.query(models.User).filter(models.User.email == user.email).first()
    if db_user:
        raise HTTPException(status_code=400, detail="This email is already in use.")
    if user.password != user.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match.")

    new_user = models.User(
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role=models.UserRole.user,
        name=user.name,
        location=user.location,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)
    log_event("user_registered", user_id=new_user.id, email=new_user.email)
    return auth.issue_tokens(new_user)


@app.post("/login", response_model=schemas.Token)
def login(user_credentials: schemas.UserLogin, request: Request, db: Session = Depends(get_db)):
    _enforce_rate_limit("login", request=request, identifier=user_credentials.email.lower())
    user = db.query(models.User).filter(models.User.email == user_credentials.email).first()
    if not user or not auth.verify_password(user_credentials.password, user.password_hash):
        log_warning("login_failed", email=user_credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    log_event("login_success", user_id=user.id, email=user.email, role=user.role.value)
    return auth.issue_tokens(user)


@app.post("/refresh", response_model=schemas.Token)
def refresh_token(payload: schemas.RefreshRequest, db: Session = Depends(get_db)):
    try:
        token_data = auth.decode_token(payload.refresh_token, "refresh")
    except auth.TokenError as exc:
        detail = "Refresh token expired." if exc.expired else "Invalid refresh token."
        raise HTTPException(status_code=401, detail=detail)

    user = db.query(models.User).filter(models.User.id == token_data.user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid refresh token.")
    return auth.issue_tokens(user)


@app.get("/me", response_model=schemas.UserResponse)
def get_me(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@app.get("/")
def read_root():
    return {"message": "Hello from Community Event Hub API!"}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = f"http_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Error"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": code, "message": message}, "detail": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger("eventhub").exception("unhandled_error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": "internal_error", "message": "An unexpected error occurred."}},
    )


_RATE_LIMIT_STORE: dict[str, list[float]] = {}


def _enforce_rate_limit(
    action: str,
    request: Request | None = None,
    limit: int = 20,
    window_seconds: int = 60,
    identifier: str | None = None,
) -> None:
    now = time.time()
    identity = identifier or (request.client.host if request and request.client else "unknown")
    key = f"{action}:{identity}"
    entries = _RATE_LIMIT_STORE.get(key, [])
    entries = [ts for ts in entries if now - ts < window_seconds]
    if len(entries) >= limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again in a moment.",
        )
    entries.append(now)
    _RATE_LIMIT_STORE[key] = entries


# -- events -----------------------------------------------------------------


@app.get("/api/events", response_model=schemas.PaginatedEvents)
def get_events(
    search: Optional[str] = None,
    category: Optional[str] = None,
    include_past: bool = False,
    page: int = 1,
    page_size: int = 10,
    db: Session = Depends(get_db),
):
    _check_pagination(page, page_size)
    now = datetime.now(timezone.utc)
    query = db.query(models.Event)
    if not include_past:
        query = query.filter(models.Event.date >= now)
    if search:
        needle = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(func.lower(models.Event.title).like(needle), func.lower(models.Event.description).like(needle))
        )
    if category:
        query = query.filter(func.lower(models.Event.category) == category.strip().lower())

    total = query.count()
    query = query.order_by(models.Event.date.asc(), models.Event.id.asc())
    query, _ = events_with_attendees(db, query)
    events = query.offset((page - 1) * page_size).limit(page_size).all()
    return {
        "items": [_serialize_event(event, attendees) for event, attendees in events],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": _pages(total, page_size),
    }


@app.get("/api/categories", response_model=schemas.CategoryListResponse)
def get_categories(db: Session = Depends(get_db)):
    rows = db.query(models.Event.category).distinct().order_by(models.Event.category).all()
    return {"items": [row[0] for row in rows if row[0]]}


@app.get("/api/events/{event_id}", response_model=schemas.EventDetailResponse)
def get_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(auth.get_optional_user),
):
    query, _ = events_with_attendees(db, db.query(models.Event).filter(models.Event.id == event_id))
    result = query.first()
    if not result:
        raise HTTPException(status_code=404, detail="Event not found.")
    event, attendees = result

    registration_status = None
    if current_user:
        registration = (
            db.query(models.Registration)
            .filter(models.Registration.event_id == event_id, models.Registration.user_id == current_user.id)
            .first()
        )
        if registration:
            registration_status = registration.status

    base = _serialize_event(event, attendees)
    return schemas.EventDetailResponse(
        **base.model_dump(),
        is_registered=registration_status in ACTIVE_REGISTRATION_STATUSES,
        registration_status=registration_status,
        available_seats=max(0, event.capacity - int(attendees or 0)),
    )


@app.post("/api/events", response_model=schemas.EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    event: schemas.EventCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    new_event = models.Event(
        title=event.title,
        description=event.description,
        category=event.category,
        date=normalize_dt(event.date),
        time=event.time,
        location=event.location,
        image_url=event.image_url,
        capacity=event.capacity,
        created_by=current_user.id,
    )
    db.add(new_event)
    db.flush()
    record_activity(
        db,
        actor_id=current_user.id,
        action="Created event",
        target_type="event",
        target_id=new_event.id,
        target_name=new_event.title,
        link=f"/events/{new_event.id}",
    )
    db.commit()
    db.refresh(new_event)
    log_event("event_created", event_id=new_event.id, actor_user_id=current_user.id)
    return _serialize_event(new_event, 0)


@app.put("/api/events/{event_id}", response_model=schemas.EventResponse)
def update_event(
    event_id: int,
    update: schemas.EventUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    db_event = _get_event_or_404(db, event_id)
    attendees = _active_registrations_count(db, event_id)
    if update.capacity < attendees:
        raise HTTPException(status_code=400, detail="Capacity cannot be lower than the current attendee count.")

    db_event.title = update.title
    db_event.description = update.description
    db_event.category = update.category
    db_event.date = normalize_dt(update.date)
    db_event.time = update.time
    db_event.location = update.location
    db_event.image_url = update.image_url
    db_event.capacity = update.capacity
    record_activity(
        db,
        actor_id=current_user.id,
        action="Updated event",
        target_type="event",
        target_id=db_event.id,
        target_name=db_event.title,
        link=f"/events/{db_event.id}",
    )
    db.commit()
    db.refresh(db_event)
    log_event("event_updated", event_id=db_event.id, actor_user_id=current_user.id)
    return _serialize_event(db_event, attendees)


@app.delete("/api/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    db_event = _get_event_or_404(db, event_id)
    record_activity(
        db,
        actor_id=current_user.id,
        action="Deleted event",
        target_type="event",
        target_id=db_event.id,
        target_name=db_event.title,
    )
    db.delete(db_event)
    db.commit()
    log_event("event_deleted", event_id=event_id, actor_user_id=current_user.id)
    return


# -- registrations ------------------------------------------------------------


@app.post(
    "/api/events/{event_id}/register",
    response_model=schemas.RegistrationActionResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_for_event(
    event_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    event = _get_event_or_404(db, event_id)
    now = datetime.now(timezone.utc)
    if normalize_dt(event.date) < now:
        raise HTTPException(status_code=400, detail="This event has already taken place.")

    if _active_registrations_count(db, event_id) >= event.capacity:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Event is at full capacity.")

    existing = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event_id, models.Registration.user_id == current_user.id)
        .first()
    )
    reactivated = False
    if existing:
        if existing.status != RegistrationStatus.cancelled:
            raise HTTPException(status_code=400, detail="You are already registered for this event.")
        registration = existing
        registration.status = RegistrationStatus.registered
        reactivated = True
    else:
        registration = models.Registration(
            user_id=current_user.id,
            event_id=event_id,
            status=RegistrationStatus.registered,
        )
        db.add(registration)
        db.flush()

    registration.qr_code_data = build_ticket_payload(registration, event, now)
    db.commit()
    db.refresh(registration)
    log_event(
        "event_reregistered" if reactivated else "event_registered",
        event_id=event.id,
        user_id=current_user.id,
        registration_id=registration.id,
    )

    subject, body_text, body_html = render_registration_email(
        event, current_user, registration, reactivated=reactivated
    )
    send_email_async(
        background_tasks,
        current_user.email,
        subject,
        body_text,
        body_html,
        context={"user_id": current_user.id, "event_id": event.id},
    )
    message = "Registration reactivated!" if reactivated else "Successfully registered for the event!"
    return {"message": message, "registration": schemas.RegistrationResponse.model_validate(registration)}


@app.delete("/api/events/{event_id}/register", response_model=schemas.RegistrationActionResponse)
def cancel_registration(
    event_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    event = _get_event_or_404(db, event_id)
    registration = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event_id, models.Registration.user_id == current_user.id)
        .first()
    )
    if not registration:
        raise HTTPException(status_code=404, detail="Registration not found.")
    if registration.status == RegistrationStatus.cancelled:
        raise HTTPException(status_code=400, detail="Registration is already cancelled.")

    registration.status = RegistrationStatus.cancelled
    db.commit()
    db.refresh(registration)
    log_event("event_unregistered", event_id=event.id, user_id=current_user.id)

    subject, body_text, body_html = render_cancellation_email(event, current_user)
    send_email_async(
        background_tasks,
        current_user.email,
        subject,
        body_text,
        body_html,
        context={"user_id": current_user.id, "event_id": event.id},
    )
    return {"message": "Registration cancelled.", "registration": schemas.RegistrationResponse.model_validate(registration)}


@app.get("/api/events/{event_id}/registration", response_model=Optional[schemas.RegistrationStatusResponse])
def get_registration_status(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(auth.get_optional_user),
):
    if current_user is None:
        return None
    registration = (
        db.query(models.Registration)
        .filter(models.Registration.event_id == event_id, models.Registration.user_id == current_user.id)
        .first()
    )
    if not registration:
        return None
    return schemas.RegistrationStatusResponse(
        id=registration.id,
        is_registered=registration.status in ACTIVE_REGISTRATION_STATUSES,
        status=registration.status,
    )


@app.get("/api/me/registrations", response_model=schemas.PaginatedRegistrations)
def my_registrations(
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    _check_pagination(page, page_size)
    query = db.query(models.Registration).filter(models.Registration.user_id == current_user.id)
    if status_filter:
        query = query.filter(models.Registration.status == status_filter)
    total = query.count()
    items = (
        query.options(joinedload(models.Registration.event))
        .order_by(models.Registration.created_at.desc(), models.Registration.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [schemas.RegistrationResponse.model_validate(item) for item in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": _pages(total, page_size),
    }


@app.get("/api/registrations/{registration_id}", response_model=schemas.RegistrationResponse)
def get_registration(
    registration_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return _get_visible_registration(db, registration_id, current_user)


@app.get("/api/registrations/{registration_id}/ticket.png")
def registration_ticket(
    registration_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    registration = _get_visible_registration(db, registration_id, current_user)
    if registration.status == RegistrationStatus.cancelled:
        raise HTTPException(status_code=404, detail="Cancelled registrations have no ticket.")
    payload_text = registration.qr_code_data
    if not payload_text:
        payload_text = build_ticket_payload(registration, registration.event, normalize_dt(registration.created_at))
    return Response(
        content=render_ticket_png(payload_text),
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="ticket-{registration.id}.png"'},
    )


@app.post("/api/admin/registrations/{registration_id}/attend", response_model=schemas.RegistrationResponse)
def mark_attended(
    registration_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    registration = (
        db.query(models.Registration)
        .options(joinedload(models.Registration.event), joinedload(models.Registration.user))
        .filter(models.Registration.id == registration_id)
        .first()
    )
    if not registration:
        raise HTTPException(status_code=404, detail="Registration not found.")
    if registration.status == RegistrationStatus.cancelled:
        raise HTTPException(status_code=400, detail="A cancelled registration cannot be marked as attended.")

    registration.status = RegistrationStatus.attended
    record_activity(
        db,
        actor_id=current_user.id,
        action="Checked in attendee",
        target_type="registration",
        target_id=registration.id,
        target_name=registration.event.title,
        link=f"/admin/events/{registration.event_id}",
    )
    db.commit()
    db.refresh(registration)
    log_event("registration_attended", registration_id=registration.id, actor_user_id=current_user.id)
    return registration


@app.get("/api/admin/events/{event_id}/registrations", response_model=schemas.PaginatedRegistrations)
def admin_event_registrations(
    event_id: int,
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    _check_pagination(page, page_size)
    _get_event_or_404(db, event_id)
    query = db.query(models.Registration).filter(models.Registration.event_id == event_id)
    if status_filter:
        query = query.filter(models.Registration.status == status_filter)
    total = query.count()
    items = (
        query.options(joinedload(models.Registration.user), joinedload(models.Registration.event))
        .order_by(models.Registration.created_at.desc(), models.Registration.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [schemas.RegistrationResponse.model_validate(item) for item in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": _pages(total, page_size),
    }


# -- profile ------------------------------------------------------------------


def _serialize_profile(user: models.User) -> schemas.ProfileResponse:
    return schemas.ProfileResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        location=user.location,
        role=user.role,
        created_at=normalize_dt(user.created_at),
        preferences=load_preferences(user.preferences),
    )


@app.get("/api/me/profile", response_model=schemas.ProfileResponse)
def get_profile(current_user: models.User = Depends(auth.get_current_user)):
    return _serialize_profile(current_user)


@app.put("/api/me/profile", response_model=schemas.ProfileResponse)
def update_profile(
    payload: schemas.ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    current_user.name = payload.name.strip()
    current_user.location = (payload.location or "").strip() or None
    if payload.preferences is not None:
        current_user.preferences = payload.preferences.model_dump()
    db.add(current_user)
    db.commit()
    db.refresh(current_user)
    log_event("profile_updated", user_id=current_user.id)
    return _serialize_profile(current_user)


@app.put("/api/me/password")
def update_password(
    payload: schemas.PasswordUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if not auth.verify_password(payload.current_password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")
    current_user.password_hash = auth.get_password_hash(payload.new_password)
    db.add(current_user)
    db.commit()
    log_event("password_changed", user_id=current_user.id)
    return {"status": "password_updated"}


# -- recommendations ------------------------------------------------------------


@app.get("/api/recommendations", response_model=schemas.RecommendationsResponse)
def recommended_events(
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: Optional[models.User] = Depends(auth.get_optional_user),
):
    if current_user is None:
        return {"events": []}
    limit = limit if limit is not None else settings.recommendations_default_limit
    if limit < 1 or limit > 50:
        raise HTTPException(status_code=400, detail="`limit` must be between 1 and 50.")

    records = get_recommended_events(db, current_user.id, limit=limit)
    return {"events": [_serialize_event(record.event, record.attendees) for record in records]}


# -- admin ----------------------------------------------------------------------


@app.get("/api/admin/stats", response_model=schemas.AdminStatsResponse)
def admin_stats(
    days: int = 30,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    if days < 1 or days > 365:
        raise HTTPException(status_code=400, detail="`days` must be between 1 and 365.")

    now = datetime.now(timezone.utc)
    total_events = db.query(func.count(models.Event.id)).scalar() or 0
    upcoming_events = db.query(func.count(models.Event.id)).filter(models.Event.date >= now).scalar() or 0
    total_users = db.query(func.count(models.User.id)).scalar() or 0
    total_registrations = db.query(func.count(models.Registration.id)).scalar() or 0

    category_rows = (
        db.query(models.Event.category, func.count(models.Event.id).label("count"))
        .group_by(models.Event.category)
        .order_by(func.count(models.Event.id).desc(), models.Event.category)
        .all()
    )

    start = now - timedelta(days=days)
    reg_rows = (
        db.query(
            func.date(models.Registration.created_at).label("day"),
            func.count(models.Registration.id).label("registrations"),
        )
        .filter(models.Registration.created_at >= start)
        .group_by("day")
        .order_by("day")
        .all()
    )

    return {
        "total_events": int(total_events),
        "upcoming_events": int(upcoming_events),
        "total_users": int(total_users),
        "total_registrations": int(total_registrations),
        "category_stats": [
            schemas.CategoryStat(category=row.category, count=int(row.count or 0)) for row in category_rows
        ],
        "registration_trend": [
            schemas.RegistrationDayStat(date=str(row.day), registrations=int(row.registrations or 0))
            for row in reg_rows
        ],
    }


@app.get("/api/admin/events/recent", response_model=schemas.AdminEventListResponse)
def admin_recent_events(
    limit: int = 5,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    query, _ = events_with_attendees(
        db, db.query(models.Event).order_by(models.Event.created_at.desc(), models.Event.id.desc())
    )
    rows = query.limit(max(1, min(limit, 50))).all()
    return {"items": [_serialize_admin_event(event, attendees) for event, attendees in rows]}


@app.get("/api/admin/events/popular", response_model=schemas.AdminEventListResponse)
def admin_popular_events(
    limit: int = 5,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    query, seats_subquery = events_with_attendees(db)
    rows = (
        query.order_by(func.coalesce(seats_subquery.c.attendees, 0).desc(), models.Event.date, models.Event.id)
        .limit(max(1, min(limit, 50)))
        .all()
    )
    return {"items": [_serialize_admin_event(event, attendees) for event, attendees in rows]}


@app.get("/api/admin/events/next", response_model=schemas.NextEventResponse)
def admin_next_event(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    now = datetime.now(timezone.utc)
    next_date = db.query(func.min(models.Event.date)).filter(models.Event.date >= now).scalar()
    return {"date": normalize_dt(next_date)}


@app.get("/api/admin/users", response_model=schemas.PaginatedAdminUsers)
def admin_list_users(
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    _check_pagination(page, page_size)

    filters = []
    if search:
        needle = f"%{search.strip().lower()}%"
        filters.append(or_(func.lower(models.User.email).like(needle), func.lower(models.User.name).like(needle)))

    total = db.query(func.count(models.User.id)).filter(*filters).scalar() or 0

    reg_counts = (
        db.query(
            models.Registration.user_id.label("user_id"),
            func.count(models.Registration.id).label("registrations_count"),
        )
        .filter(models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES))
        .group_by(models.Registration.user_id)
        .subquery()
    )
    rows = (
        db.query(models.User, func.coalesce(reg_counts.c.registrations_count, 0).label("registrations_count"))
        .outerjoin(reg_counts, reg_counts.c.user_id == models.User.id)
        .filter(*filters)
        .order_by(models.User.created_at.desc(), models.User.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [
        schemas.AdminUserResponse(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            location=user.location,
            created_at=normalize_dt(user.created_at),
            registrations_count=int(registrations_count or 0),
        )
        for user, registrations_count in rows
    ]
    return {
        "items": items,
        "total": int(total),
        "page": page,
        "page_size": page_size,
        "pages": _pages(int(total), page_size),
    }


@app.patch("/api/admin/users/{user_id}/role", response_model=schemas.AdminUserResponse)
def admin_update_user_role(
    user_id: int,
    payload: schemas.RoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")

    user.role = payload.role
    record_activity(
        db,
        actor_id=current_user.id,
        action=f"Changed role to {payload.role.value}",
        target_type="user",
        target_id=user.id,
        target_name=user.name or user.email,
        link="/admin/users",
    )
    db.commit()
    db.refresh(user)
    log_event("user_role_updated", user_id=user.id, role=user.role.value, actor_user_id=current_user.id)
    return schemas.AdminUserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        location=user.location,
        created_at=normalize_dt(user.created_at),
        registrations_count=(
            db.query(func.count(models.Registration.id))
            .filter(
                models.Registration.user_id == user.id,
                models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
            .scalar()
            or 0
        ),
    )


@app.delete("/api/admin/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account.")
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")

    transferred = 0
    for event in list(user.events):
        event.creator = current_user
        transferred += 1
    target_name = user.name or user.email
    db.delete(user)
    record_activity(
        db,
        actor_id=current_user.id,
        action="Deleted user",
        target_type="user",
        target_id=user_id,
        target_name=target_name,
    )
    db.commit()
    log_event("user_deleted", user_id=user_id, actor_user_id=current_user.id, events_transferred=transferred)
    return


# -- activity log -----------------------------------------------------------------


@app.post("/api/admin/activities", response_model=schemas.ActivityCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_activity(
    payload: schemas.ActivityCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    activity = record_activity(
        db,
        actor_id=current_user.id,
        action=payload.action.strip(),
        target_type=payload.target_type.strip(),
        target_id=payload.target_id,
        target_name=payload.target_name.strip(),
        link=payload.link,
    )
    db.commit()
    db.refresh(activity)
    return {"id": activity.id}


@app.get("/api/admin/activities/recent", response_model=List[schemas.RecentActivityResponse])
def recent_activities(
    limit: int = 10,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="`limit` must be between 1 and 100.")
    now = datetime.now(timezone.utc)
    rows = (
        db.query(models.Activity)
        .filter(models.Activity.user_id == current_user.id)
        .order_by(models.Activity.created_at.desc(), models.Activity.id.desc())
        .limit(limit)
        .all()
    )
    return [
        schemas.RecentActivityResponse(
            id=activity.id,
            action=activity.action,
            target=activity.target_name,
            time=relative_time(activity.created_at, now),
            link=activity.link or "#",
        )
        for activity in rows
    ]


@app.get("/api/admin/activities", response_model=schemas.PaginatedActivities)
def list_activities(
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    _check_pagination(page, page_size)
    query = db.query(models.Activity).filter(models.Activity.user_id == current_user.id)
    total = query.count()
    rows = (
        query.order_by(models.Activity.created_at.desc(), models.Activity.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    items = [
        schemas.ActivityResponse(
            id=activity.id,
            action=activity.action,
            target=activity.target_name,
            target_type=activity.target_type,
            date=normalize_dt(activity.created_at),
            link=activity.link or "#",
        )
        for activity in rows
    ]
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": _pages(total, page_size),
    }


@app.delete("/api/admin/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_activity(
    activity_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    activity = (
        db.query(models.Activity)
        .filter(models.Activity.id == activity_id, models.Activity.user_id == current_user.id)
        .first()
    )
    if not activity:
        raise HTTPException(status_code=404, detail="Activity not found.")
    db.delete(activity)
    db.commit()
    return


@app.delete("/api/admin/activities", status_code=status.HTTP_204_NO_CONTENT)
def clear_activities(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    deleted = (
        db.query(models.Activity)
        .filter(models.Activity.user_id == current_user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    log_event("activities_cleared", user_id=current_user.id, deleted=deleted)
    return


@app.post("/api/admin/assistant/chat", response_model=schemas.ChatResponse)
def assistant_chat(
    payload: schemas.ChatRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.require_admin),
):
    history = [message.model_dump() for message in payload.messages]
    try:
        reply = complete_chat(db, history)
    except AssistantNotConfigured:
        raise HTTPException(status_code=503, detail="The assistant is not configured.")
    except AssistantError:
        raise HTTPException(status_code=502, detail="The assistant is temporarily unavailable.")
    return {"reply": reply}


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok", "database": "ok"}
    except Exception:
        raise HTTPException(status_code=503, detail="Database unavailable")
