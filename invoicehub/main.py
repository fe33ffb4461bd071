import asyncio
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from invoicehub.config import settings
from invoicehub.context import build_context
from invoicehub.exceptions import InvoiceHubError
from invoicehub.logging_config import setup_logging
from invoicehub.middleware.correlation import CorrelationIdMiddleware
from invoicehub.routes.errors import to_http_exception
from invoicehub.services.firebase_app import init_firebase

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_invoicehub", env=settings.ENVIRONMENT, store=settings.STORE_BACKEND)
    firebase_app = init_firebase()
    # Tests install their own context before startup
    if getattr(app.state, "context", None) is None:
        app.state.context = build_context(settings, firebase_app=firebase_app)
    yield
    logger.info("stopping_invoicehub")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers normalize every error to
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ],
            }
        },
    )


@app.exception_handler(InvoiceHubError)
async def domain_exception_handler(request: Request, exc: InvoiceHubError) -> JSONResponse:
    logger.error("unhandled_domain_error", code=exc.code, error=exc.message)
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content=http_exc.detail)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, error_type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(request: Request, response: Response):
    ctx = request.app.state.context
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    # 1. Check realtime store
    try:
        await ctx.db.get_data("health")
        health_status["checks"]["store"] = "ok"
    except Exception as e:
        logger.error("health_check_store_failed", error=str(e))
        health_status["checks"]["store"] = "error"
        health_status["status"] = "unhealthy"

    # 2. Check blob storage
    try:
        await asyncio.to_thread(ctx.storage.ping)
        health_status["checks"]["blob_storage"] = "ok"
    except Exception as e:
        logger.error("health_check_blob_storage_failed", error=str(e))
        health_status["checks"]["blob_storage"] = "error"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from invoicehub.routes.invoices import router as invoices_router  # noqa: E402
from invoicehub.routes.files import router as files_router  # noqa: E402
from invoicehub.routes.activity import router as activity_router  # noqa: E402
from invoicehub.routes.organizations import router as organizations_router  # noqa: E402
from invoicehub.routes.users import router as users_router  # noqa: E402
from invoicehub.routes.dashboard import router as dashboard_router  # noqa: E402
from invoicehub.routes.notifications import router as notifications_router  # noqa: E402

app.include_router(invoices_router, prefix="/api/v1/invoices", tags=["Invoices"])
app.include_router(files_router, prefix="/api/v1/files", tags=["Files"])
app.include_router(activity_router, prefix="/api/v1/activity", tags=["Activity"])
app.include_router(organizations_router, prefix="/api/v1/organizations", tags=["Organizations"])
app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])
app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["Dashboard"])
app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
