"""
main.py — FastAPI Application Entry Point
Water Quality Tracker
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, BackgroundTasks, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from app.config import settings
from app.analytics import compute_user_analytics, compute_water_quality_analytics
from app.auth import authenticate, require_admin
from app.errors import DuplicateEmail, InvalidCredentials, NotFound, SelfDeleteForbidden, register_exception_handlers
from app.models.db_models import TrackingAction
from app.repository import Repository, get_repository, select_repository
from app.tracking import purge_expired_events, request_meta, track_event
from app.utils import (
    UserCreate, LoginRequest, AdminUserCreate, AdminUserUpdate, UserStatusUpdate, WaterQualityIn,
    TokenIdentity, hash_password, verify_password, create_access_token, public_user, public_record, utcnow,
)


# ── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    repository = await select_repository(settings)
    app.state.repository = repository

    async def _cleanup():
        await purge_expired_events(repository, settings.TRACKING_RETENTION_DAYS)

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _cleanup,
        trigger=IntervalTrigger(hours=settings.TRACKING_CLEANUP_INTERVAL_HOURS),
        id="tracking_cleanup",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started (tracking cleanup every {settings.TRACKING_CLEANUP_INTERVAL_HOURS}h).")
    yield
    scheduler.shutdown(wait=False)
    await repository.close()
    logger.info("Application shutdown complete.")


# ── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "User registration tracking and water-quality field records. "
        "Runs on a SQL database, or in memory when the database is unreachable."
    ),
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════════
@app.get("/api/health", tags=["System"])
async def health_check(repository: Repository = Depends(get_repository)):
    return {
        "success": True,
        "status": "OK",
        "message": f"{settings.APP_NAME} is running",
        "database": repository.mode,
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
    }


@app.get("/api/debug", tags=["System"])
async def debug_info(repository: Repository = Depends(get_repository)):
    if not settings.DEBUG:
        raise NotFound("Resource")
    return {"success": True, "databaseMode": repository.mode, "counts": await repository.stats()}


# ═══════════════════════════════════════════════════════════════════════════════
# AUTH
# ═══════════════════════════════════════════════════════════════════════════════
@app.post("/api/auth/register", tags=["Auth"], status_code=201)
async def register(
    payload: UserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    repository: Repository = Depends(get_repository),
):
    if await repository.find_user_by_email(payload.email):
        raise DuplicateEmail()
    meta = request_meta(request)
    user = await repository.create_user(
        {
            "email": payload.email,
            "password_hash": await run_in_threadpool(hash_password, payload.password),
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "registration_source": "web",
            **meta,
        },
        claim_admin=True,
    )
    if user["is_admin"]:
        logger.info(f"First user {user['id']} registered as administrator.")
    background_tasks.add_task(
        track_event, repository, user["id"], TrackingAction.REGISTRATION, meta,
        {"registrationMethod": "email", "hasPassword": True},
    )
    return {
        "success": True,
        "message": "User registered successfully",
        "user": public_user(user),
        "token": create_access_token(user["id"], user["email"]),
    }


@app.post("/api/auth/login", tags=["Auth"])
async def login(
    payload: LoginRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    repository: Repository = Depends(get_repository),
):
    user = await repository.find_user_by_email(payload.email)
    if not user or not await run_in_threadpool(verify_password, payload.password, user["password_hash"]):
        raise InvalidCredentials()
    user = await repository.update_user(user["id"], {"last_login": utcnow()}) or user
    background_tasks.add_task(track_event, repository, user["id"], TrackingAction.LOGIN, request_meta(request))
    return {
        "success": True,
        "message": "Login successful",
        "user": public_user(user),
        "token": create_access_token(user["id"], user["email"]),
    }


@app.get("/api/auth/me", tags=["Auth"])
async def current_user(
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    user = await repository.find_user_by_id(identity.user_id)
    if not user:
        raise NotFound("User")
    return {"success": True, "user": public_user(user)}


@app.post("/api/auth/logout", tags=["Auth"])
async def logout(
    request: Request,
    background_tasks: BackgroundTasks,
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    # the token itself stays valid until it expires
    background_tasks.add_task(track_event, repository, identity.user_id, TrackingAction.LOGOUT, request_meta(request))
    return {"success": True, "message": "Logged out"}


# ═══════════════════════════════════════════════════════════════════════════════
# USERS
# ═══════════════════════════════════════════════════════════════════════════════
@app.get("/api/users", tags=["Users"])
async def list_users(
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    return {"success": True, "users": [public_user(u) for u in await repository.list_users()]}


@app.get("/api/admin/users", tags=["Admin"])
async def admin_list_users(
    identity: TokenIdentity = Depends(require_admin),
    repository: Repository = Depends(get_repository),
):
    return {"success": True, "users": [public_user(u) for u in await repository.list_users()]}


@app.post("/api/admin/users", tags=["Admin"], status_code=201)
async def admin_create_user(
    payload: AdminUserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: TokenIdentity = Depends(require_admin),
    repository: Repository = Depends(get_repository),
):
    if await repository.find_user_by_email(payload.email):
        raise DuplicateEmail()
    user = await repository.create_user({
        "email": payload.email,
        "password_hash": await run_in_threadpool(hash_password, payload.password),
        "first_name": payload.first_name,
        "last_name": payload.last_name,
        "is_admin": payload.is_admin,
        "is_active": payload.is_active,
        "registration_source": "admin",
    })
    logger.info(f"Admin {identity.user_id} created user {user['id']}.")
    background_tasks.add_task(
        track_event, repository, user["id"], TrackingAction.REGISTRATION, request_meta(request),
        {"registrationMethod": "admin", "createdBy": identity.user_id},
    )
    return {"success": True, "message": "User created successfully", "user": public_user(user)}


@app.put("/api/admin/users/{user_id}", tags=["Admin"])
async def admin_update_user(
    user_id: str,
    payload: AdminUserUpdate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: TokenIdentity = Depends(require_admin),
    repository: Repository = Depends(get_repository),
):
    user = await repository.find_user_by_id(user_id)
    if not user:
        raise NotFound("User")
    if payload.email != user["email"] and await repository.find_user_by_email(payload.email):
        raise DuplicateEmail()

    changes = {
        "email": payload.email,
        "first_name": payload.first_name,
        "last_name": payload.last_name,
    }
    if payload.password:
        changes["password_hash"] = await run_in_threadpool(hash_password, payload.password)
    if payload.is_admin is not None:
        changes["is_admin"] = payload.is_admin
    if payload.is_active is not None:
        changes["is_active"] = payload.is_active

    updated = await repository.update_user(user_id, changes)
    if not updated:
        raise NotFound("User")
    background_tasks.add_task(
        track_event, repository, user_id, TrackingAction.PROFILE_UPDATE, request_meta(request),
        {"updatedBy": identity.user_id, "passwordChanged": "password_hash" in changes},
    )
    return {"success": True, "message": "User updated successfully", "user": public_user(updated)}


@app.delete("/api/admin/users/{user_id}", tags=["Admin"])
async def admin_delete_user(
    user_id: str,
    identity: TokenIdentity = Depends(require_admin),
    repository: Repository = Depends(get_repository),
):
    if user_id == identity.user_id:
        raise SelfDeleteForbidden()
    if not await repository.delete_user(user_id):
        raise NotFound("User")
    logger.info(f"Admin {identity.user_id} deleted user {user_id}.")
    return {"success": True, "message": "User deleted successfully"}


@app.patch("/api/admin/users/{user_id}/status", tags=["Admin"])
async def admin_set_user_status(
    user_id: str,
    payload: UserStatusUpdate,
    identity: TokenIdentity = Depends(require_admin),
    repository: Repository = Depends(get_repository),
):
    if not await repository.update_user(user_id, {"is_active": payload.is_active}):
        raise NotFound("User")
    state = "activated" if payload.is_active else "deactivated"
    return {"success": True, "message": f"User {state} successfully"}


# ═══════════════════════════════════════════════════════════════════════════════
# ANALYTICS
# ═══════════════════════════════════════════════════════════════════════════════
@app.get("/api/analytics", tags=["Analytics"])
async def user_analytics(repository: Repository = Depends(get_repository)):
    return {"success": True, "analytics": compute_user_analytics(await repository.list_users())}


@app.get("/api/water-quality-analytics", tags=["Analytics"])
async def water_quality_analytics(repository: Repository = Depends(get_repository)):
    return {"success": True, "analytics": compute_water_quality_analytics(await repository.list_records())}


# ═══════════════════════════════════════════════════════════════════════════════
# WATER QUALITY
# ═══════════════════════════════════════════════════════════════════════════════
@app.post("/api/water-quality", tags=["Water Quality"], status_code=201)
async def create_water_quality(
    payload: WaterQualityIn,
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    record = await repository.create_record({**payload.record_fields(), "created_by": identity.user_id})
    return {
        "success": True,
        "message": "Water quality record created successfully",
        "waterQuality": public_record(record),
    }


@app.get("/api/water-quality", tags=["Water Quality"])
async def list_water_quality(
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    return {"success": True, "waterQuality": [public_record(r) for r in await repository.list_records()]}


@app.get("/api/water-quality/{record_id}", tags=["Water Quality"])
async def get_water_quality(
    record_id: str,
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    record = await repository.find_record_by_id(record_id)
    if not record:
        raise NotFound("Water quality record")
    return {"success": True, "waterQuality": public_record(record)}


@app.put("/api/water-quality/{record_id}", tags=["Water Quality"])
async def update_water_quality(
    record_id: str,
    payload: WaterQualityIn,
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    # full replace: optional fields missing from the payload are cleared
    record = await repository.update_record(record_id, payload.record_fields())
    if not record:
        raise NotFound("Water quality record")
    return {
        "success": True,
        "message": "Water quality record updated successfully",
        "waterQuality": public_record(record),
    }


@app.delete("/api/water-quality/{record_id}", tags=["Water Quality"])
async def delete_water_quality(
    record_id: str,
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
):
    if not await repository.delete_record(record_id):
        raise NotFound("Water quality record")
    return {"success": True, "message": "Water quality record deleted successfully"}
