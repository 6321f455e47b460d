"""
Main FastAPI application: processor webhooks, access verification, checkout,
session refresh, health and metrics.
"""
import logging

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from paygate.api.routes import access, auth, checkout, health, webhooks
from paygate.core.config import settings
from paygate.core.errors import PaygateError
from paygate.core.logging import configure_logging
from paygate.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Paygate API",
    description="Payment-to-entitlement reconciliation: processor webhooks, access verification, checkout",
    version="1.0.0",
)


CORS_HEADERS = {
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}
if "*" in (settings.cors_origins_list or ["*"]):
    CORS_HEADERS["Access-Control-Allow-Origin"] = "*"


# CORSMiddleware must stay outermost: register this first.
@app.middleware("http")
async def options_passthrough(request: Request, call_next):
    """Every endpoint answers a bare OPTIONS with an empty 200 and the CORS headers."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------
# Errors: every JSON error body is {"error": message}
# ------------------------------------------------------------------

@app.exception_handler(PaygateError)
async def paygate_error_handler(request: Request, exc: PaygateError) -> JSONResponse:
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        level,
        "request_failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "error": exc.message,
            "context": exc.context or None,
        },
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    message = f"Invalid request: {', '.join(f for f in fields if f) or 'body'}"
    logger.warning(
        "request_invalid",
        extra={"path": request.url.path, "method": request.method, "status_code": 400, "error": message},
    )
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception(
        "database_error",
        extra={"path": request.url.path, "method": request.method, "status_code": 500},
    )
    return JSONResponse(status_code=500, content={"error": "Database error"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={"path": request.url.path, "method": request.method, "status_code": 500},
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(webhooks.router)
app.include_router(access.router)
app.include_router(checkout.router)
app.include_router(auth.router)
app.include_router(metrics_router)
