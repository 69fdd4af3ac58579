from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.router import router
from src.config import Settings, get_settings
from src.core.exceptions import register_exception_handlers
from src.core.logging import configure_logging
from src.services.evictor import Evictor
from src.services.fetcher import Fetcher
from src.services.naming import NameGenerator
from src.services.pipeline import ProxyPipeline
from src.services.rate_limit import InMemoryRateLimiter
from src.services.retry import RetryPolicy, retry_all, retry_transient
from src.services.storage import Store

logger = structlog.get_logger()

RATE_LIMIT_EXEMPT = ("/health",)


def build_pipeline(
    settings: Settings,
    store: Store,
    transport: httpx.AsyncBaseTransport | None = None,
    retry: RetryPolicy | None = None,
) -> ProxyPipeline:
    fetcher = Fetcher(timeout=settings.fetch_timeout, max_bytes=settings.max_fetch_bytes, transport=transport)
    if retry is None:
        retry = RetryPolicy(
            max_attempts=settings.fetch_max_retries,
            retry_on=retry_all if settings.retry_client_errors else retry_transient,
        )
    return ProxyPipeline(
        fetcher=fetcher,
        retry=retry,
        names=NameGenerator(settings.path_prefix),
        store=store,
        custom_domain=settings.custom_domain,
        block_private_hosts=settings.block_private_hosts,
    )


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    retry: RetryPolicy | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    store = Store(settings.storage_path)
    pipeline = build_pipeline(settings, store, transport=transport, retry=retry)
    evictor = Evictor(store, ttl=settings.ttl_seconds, interval=settings.cleanup_interval)
    limit, window = settings.rate_limit_rule
    rate_limiter = InMemoryRateLimiter(limit, window)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            store.ensure_root()
        except OSError as e:
            logger.critical("storage_root_unavailable", path=str(store.root), error=str(e))
            raise
        evictor.start()
        logger.info(
            "server_started",
            host=settings.host,
            port=settings.port,
            storage_path=str(store.root),
            file_expiry_hours=settings.file_expiry_hours,
            rate_limit=limit,
            rate_window=window,
        )
        try:
            yield
        finally:
            await evictor.stop()
            await pipeline.fetcher.aclose()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.pipeline = pipeline
    app.state.evictor = evictor
    app.state.rate_limiter = rate_limiter

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):  # noqa: ANN001, ANN202
        if request.method == "OPTIONS" or request.url.path in RATE_LIMIT_EXEMPT:
            return await call_next(request)
        client_key = request.client.host if request.client else "unknown"
        allowed, remaining = request.app.state.rate_limiter.check(client_key)
        headers = {
            "X-RateLimit-Limit": str(request.app.state.rate_limiter.limit),
            "X-RateLimit-Remaining": str(remaining),
        }
        if not allowed:
            return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"}, headers=headers)
        response = await call_next(request)
        response.headers.update(headers)
        return response

    # added last so it wraps the rate limiter and answers preflight itself
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key"],
        max_age=86400,
    )

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("src.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
