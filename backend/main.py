from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import os
import sys

from database import engine, Base, SessionLocal
import models
from errors import TaskManagerError
from auth.routes import router as auth_router
from tasks.routes import router as tasks_router
from users.routes import router as users_router
from time_utils import utc_now

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Manager API",
    description="A task management system with users, tasks, comments and PDF attachments",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ALLOW_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(tasks_router)


# ============== Error Handling ==============

@app.exception_handler(TaskManagerError)
async def task_manager_error_handler(request: Request, exc: TaskManagerError):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


HTTP_ERROR_KINDS = {
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    status.HTTP_403_FORBIDDEN: "Forbidden",
    status.HTTP_404_NOT_FOUND: "NotFound",
    status.HTTP_405_METHOD_NOT_ALLOWED: "MethodNotAllowed",
}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": HTTP_ERROR_KINDS.get(exc.status_code, "Error"), "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"{request.method} {request.url.path} -> 400 request validation failed")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "InternalError", "detail": "Server error"},
    )


# ============== Startup ==============

def _env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


@app.on_event("startup")
async def prepare_database():
    """
    Create tables and ensure an admin user exists on startup.

    Uses ADMIN_EMAIL / ADMIN_PASSWORD if set, otherwise admin@example.com /
    'admin123' for local dev. The default password is refused in production.
    """
    from auth.security import hash_password, is_production_like

    if _env_flag("AUTO_CREATE_TABLES"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")

    if not _env_flag("SEED_ADMIN_USER"):
        return

    admin_email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    admin_password = os.getenv("ADMIN_PASSWORD", "admin123")
    is_default_password = admin_password.strip() == "admin123"

    # Treat empty, whitespace-only, short or default passwords as invalid
    if is_production_like() and (is_default_password or len(admin_password.strip()) < 8):
        logger.error(
            "=" * 80 + "\n"
            "❌ STARTUP FAILED: Secure ADMIN_PASSWORD is required in production/staging!\n"
            "❌ Password must not be the default 'admin123' and must be at least 8 characters.\n"
            "❌ Example: ADMIN_PASSWORD=$(openssl rand -base64 32)\n" +
            "=" * 80
        )
        sys.exit(1)

    db = SessionLocal()
    try:
        admin = db.query(models.User).filter(models.User.email == admin_email).first()
        if admin:
            logger.info(f"Admin user already exists (email: {admin_email})")
            return

        admin = models.User(
            name="Admin",
            email=admin_email,
            role=models.Role.admin,
            password_hash=hash_password(admin_password),
            is_active=True,
        )
        db.add(admin)
        db.commit()

        if is_default_password:
            logger.warning(
                "=" * 80 + "\n"
                f"⚠️  SECURITY WARNING: Admin user {admin_email} created with DEFAULT password 'admin123'\n"
                "⚠️  This is OK for local development but DANGEROUS for production!\n"
                "⚠️  Set ADMIN_PASSWORD environment variable to use a custom password.\n" +
                "=" * 80
            )
        else:
            logger.info(f"✅ Admin user created with custom password from ADMIN_PASSWORD (email: {admin_email})")
    except Exception as e:
        logger.error(f"Failed to ensure admin user exists: {e}")
        db.rollback()
        # Don't fail startup - let the app run even if admin creation fails
    finally:
        db.close()


@app.get("/health")
def health_check():
    return {"status": "ok", "timestamp": utc_now().isoformat()}
