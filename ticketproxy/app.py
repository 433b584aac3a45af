from dotenv import load_dotenv
load_dotenv()
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import httpx, logging

from .config import AppConfig
from .errors import ApiError
from .middleware.request_logging import RequestLoggingMiddleware
from .proxy import ProxyEngine
from .proxy.engine import Sleep
from .routes import health, markup_rules, ticket_markups, hospitality, public, proxy

logger = logging.getLogger("ticketproxy.app")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    config: Optional[AppConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Optional[Sleep] = None,
) -> FastAPI:
    config = config or AppConfig.from_env()
    settings = config.proxy_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Shared upstream HTTP client (per-worker)
        app.state.upstream_client = client or httpx.AsyncClient(
            max_redirects=5,
            limits=httpx.Limits(
                max_connections=200,
                max_keepalive_connections=50,
                keepalive_expiry=30.0,
            ),
        )
        app.state.proxy_engine = ProxyEngine(settings, app.state.upstream_client, sleep=sleep)
        logger.info(
            "Proxy ready (upstream=%s, timeout_ms=%d, max_retries=%d)",
            settings.base_url,
            settings.timeout_ms,
            settings.max_retries,
        )

        try:
            yield
        finally:
            await app.state.upstream_client.aclose()
            app.state.proxy_engine = None

    app = FastAPI(title="Ticket Proxy", debug=config.debug, lifespan=lifespan)
    app.state.config = config

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": f"{field}: {message}" if field else message,
                "status_code": 400,
            },
        )

    app.add_middleware(RequestLoggingMiddleware)

    # CORS for the admin UI and storefront
    allow_credentials = config.cors_allow_credentials and "*" not in config.cors_allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_allowed_origins),
        allow_credentials=allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        max_age=config.cors_max_age,
    )

    # Routers; local /v1 routes must come before the proxy catch-all
    app.include_router(health.router)
    app.include_router(markup_rules.router)
    app.include_router(ticket_markups.router)
    app.include_router(hospitality.router)
    app.include_router(hospitality.assignments_router)
    app.include_router(public.router)
    app.include_router(proxy.router)

    return app


_config = AppConfig.from_env()
configure_logging(_config.log_level)
app = create_app(_config)
