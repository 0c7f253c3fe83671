"""
eQMS Backend Main Application
Deviations, CAPA, change control and controlled documents on FastAPI and MongoDB
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
import logging
import uuid

# Core imports
from eqms.core.config import settings
from eqms.core.exceptions import QmsError
from eqms.core.logging_config import configure_logging
from eqms.core.responses import error_body
from eqms.core.security import hash_password
from eqms.db.mongo import (
    Collections, close_database_connection, ensure_indexes, get_database, ping_database,
)
from eqms.models.rbac import DEFAULT_ROLES
from eqms.models.workflow import RoleName
from eqms.services.numbering import NumberingService

# API Routers
from eqms.api.v1 import (
    attachments, auth, capa, change_control, deviation_impacts, deviations,
    documents, investigation_teams, master_data, otp, rbac,
)

logger = logging.getLogger(__name__)

UPLOAD_DIR = Path(settings.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)


async def seed_defaults(db: AsyncIOMotorDatabase) -> None:
    """
    Default roles, the QA department and, when configured, the first admin
    """
    now = datetime.now(timezone.utc)

    for role_name in DEFAULT_ROLES:
        existing = await db[Collections.ROLES].find_one({"name": role_name})
        if not existing:
            await db[Collections.ROLES].insert_one({
                "id": str(uuid.uuid4()),
                "name": role_name,
                "created_at": now,
                "updated_at": now,
            })
            logger.info(f"Role created: {role_name}")

    qa = await db[Collections.DEPARTMENTS].find_one({"name": settings.QA_DEPARTMENT_NAME})
    if not qa:
        code = await NumberingService(db).derive_department_code(settings.QA_DEPARTMENT_NAME)
        qa = {
            "id": str(uuid.uuid4()),
            "name": settings.QA_DEPARTMENT_NAME,
            "description": "Quality assurance",
            "code": code,
            "created_at": now,
            "updated_at": now,
        }
        await db[Collections.DEPARTMENTS].insert_one(qa)
        logger.info(f"Department created: {settings.QA_DEPARTMENT_NAME} ({code})")

    if settings.ADMIN_EMAIL and settings.ADMIN_PASSWORD:
        email = settings.ADMIN_EMAIL.lower()
        if not await db[Collections.USERS].find_one({"email": email}):
            admin_role = await db[Collections.ROLES].find_one({"name": RoleName.SYSTEM_ADMIN.value})
            await db[Collections.USERS].insert_one({
                "id": str(uuid.uuid4()),
                "email": email,
                "password": hash_password(settings.ADMIN_PASSWORD),
                "name": settings.ADMIN_NAME,
                "role_id": admin_role["id"],
                "department_id": qa["id"],
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            })
            logger.warning(f"Admin user created: {email}. Change the password after the first login")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application startup and shutdown
    """
    configure_logging()
    logger.info(f"{settings.APP_NAME} backend starting...")

    db = await get_database()
    await ensure_indexes(db)
    await seed_defaults(db)

    logger.info(f"{settings.APP_NAME} backend ready")

    yield

    logger.info(f"{settings.APP_NAME} backend shutting down...")
    await close_database_connection()


# FastAPI application
app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Electronic quality management: deviations, CAPA, change control and controlled documents",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Static files; stored uploads are served from here
app.mount("/uploads", StaticFiles(directory=str(UPLOAD_DIR)), name="uploads")


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(QmsError)
async def qms_error_handler(request: Request, exc: QmsError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, **exc.details),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("Invalid request data", errors=errors),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body(str(exc) or "Internal server error"),
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health")
async def health_check():
    """System health check"""
    database = await ping_database()
    return {
        "status": "healthy" if database else "degraded",
        "service": f"{settings.APP_NAME} Backend",
        "version": settings.APP_VERSION,
        "database": "connected" if database else "unreachable",
    }


# Team routers go before their parents so /capa/investigation-teams is not read as a CAPA id
for router in (
    auth.router,
    otp.router,
    rbac.router,
    master_data.router,
    documents.manual_router,
    documents.policy_router,
    documents.procedure_router,
    documents.work_instruction_router,
    documents.router,
    deviations.router,
    deviation_impacts.router,
    attachments.router,
    investigation_teams.router,
    investigation_teams.capa_router,
    investigation_teams.change_control_router,
    capa.router,
    change_control.router,
):
    app.include_router(router, prefix=settings.API_PREFIX)


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "eqms.main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.DEBUG,
        log_level="info"
    )
