from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.features.users.routes import router as user_router
from app.features.organizations.routes import router as organization_router
from app.features.admins.routes import router as admin_router
from app.features.permissions.routes import router as permission_router
from app.features.permissions.errors import DEFAULT_MESSAGES, IntegrityFault, ReasonCode, StoreUnavailableError
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Organization Authorization Backend",
    description="Multi-tenant role and capability authorization for organization admins",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(IntegrityFault)
async def integrity_fault_handler(request: Request, exc: IntegrityFault) -> Response:
    log.error(f"Integrity fault on {request.url.path}: {exc} {exc.context}")
    return JSONResponse(
        {"detail": {"reason": "InternalFault", "message": "Authorization data is inconsistent, contact support"}},
        status_code=500,
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> Response:
    log.warning(f"Store unavailable on {request.url.path}: {exc}")
    reason = ReasonCode.STORE_UNAVAILABLE
    return JSONResponse(
        {"detail": {"reason": reason.value, "message": DEFAULT_MESSAGES[reason]}},
        status_code=503,
    )


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Organization Authorization API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/users/me", "/organizations/*", "/admin/*", "/permissions/me"],
            "public_endpoints": ["/health", "/permissions/catalog"]
        },
        "features": {
            "organizations": "Tenant provisioning and primary admin setup (superAdmin)",
            "admin": "Secondary admin management by primary admins",
            "permissions": "Role hierarchy and per-admin capability checks",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Organization provisioning (superAdmin)
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])

# Admin management
app.include_router(admin_router, prefix="/admin", tags=["admin"])

# Permission catalog and checks
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
