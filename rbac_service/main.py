from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from rbac_service.config import get_settings
from rbac_service.base_microservice import BaseMicroservice, engine
from rbac_service.auth.exceptions import AuthServiceError, StoreUnavailable, Unauthorized
from rbac_service.auth.router import router as auth_router, start_auth_service
from rbac_service.account.router import router as account_router
from rbac_service.admin.router import router as admin_router
from rbac_service.manager.router import router as manager_router

# Fails fast on an unusable production configuration
settings = get_settings()

# Create shared base microservice instance
base_service = BaseMicroservice("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    base_service.log_event("service.startup", {"service": "main", "environment": settings.environment})
    await start_auth_service(settings)

    yield

    base_service.log_event("service.shutdown", {"service": "main"})
    await engine.dispose()


# Create main FastAPI app with lifespan
app = FastAPI(
    title="RBAC Auth API",
    description="JWT authentication with role-gated admin, manager and user dashboards",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
    expose_headers=["Content-Length"],
)


@app.exception_handler(AuthServiceError)
async def auth_service_error_handler(request: Request, exc: AuthServiceError):
    """Render service errors in the standard envelope."""
    headers = {}
    if isinstance(exc, Unauthorized):
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, StoreUnavailable):
        headers["Retry-After"] = str(exc.retry_after)
        base_service.log_error(exc, context=f"{request.method} {request.url.path}")

    return base_service.mcp_response(
        message=exc.detail,
        status="error",
        status_code=exc.status_code,
        headers=headers or None,
    )


# Include routers with prefixes
app.include_router(auth_router, prefix="/api/auth")
app.include_router(account_router, prefix="/api/user")
app.include_router(admin_router, prefix="/api/admin")
app.include_router(manager_router, prefix="/api/manager")


@app.get("/api/health", tags=["health"])
async def health_check():
    """Overall system health check."""
    return base_service.mcp_response(message="Server is running")


# For running directly with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rbac_service.main:app", host="0.0.0.0", port=8080, reload=True)
