from contextlib import asynccontextmanager
from functools import lru_cache

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.config import Settings
from storefront.database import make_session_factory
from storefront.errors import APIError
from storefront.gateway import RazorpayGateway
from storefront.logging_config import get_logger, setup_logging
from storefront.payments import PaymentService
from storefront.routes import router

log = get_logger(__name__)


def create_app(settings: Settings = None, gateway: RazorpayGateway = None, session_factory=None) -> FastAPI:
    """
    Builds the storefront API.

    Everything the handlers need (settings, the Razorpay gateway, the DB
    session factory) is injected here and kept on `app.state`; tests pass
    their own gateway double and database.
    """
    setup_logging()
    settings = settings or Settings.from_env()
    gateway = gateway or RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(f"Storefront API starting on port {settings.port} ({settings.environment})")
        log.info(f"Razorpay configured: {settings.razorpay_configured} (key: {settings.masked_key_id})")
        for route in app.routes:
            methods = ",".join(sorted(getattr(route, "methods", None) or []))
            if methods and route.path.startswith(("/api", "/health")):
                log.info(f"  {methods:<10} {route.path}")
        yield
        log.info("Storefront API shutting down")

    app = FastAPI(title="Storefront Payment API", lifespan=lifespan)
    app.state.settings = settings
    app.state.payment_service = PaymentService(gateway, settings)
    app.state.session_factory = session_factory or make_session_factory(settings.database_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.allow_all_origins else settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        log.info(f"{request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request body", "details": jsonable_errors(exc)},
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse({"error": "Endpoint not found"}, status_code=404)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        message = str(exc) if settings.environment == "development" else "Something went wrong"
        return JSONResponse({"error": "Internal server error", "message": message}, status_code=500)

    app.include_router(router)
    return app


def jsonable_errors(exc: RequestValidationError):
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
        for error in exc.errors()
    ]


@lru_cache()
def get_app() -> FastAPI:
    """The process-wide app, configured from the environment on first use."""
    return create_app(Settings.from_env())


def __getattr__(name):
    # `uvicorn storefront.main:app` resolves the app lazily, so importing this
    # module does not need DATABASE_URL or Razorpay keys
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def serve():
    app = get_app()
    # uvicorn turns SIGTERM/SIGINT into a graceful shutdown with exit code 0
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
