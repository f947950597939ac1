"""
FastAPI application for the storage gateway with:
 - structured logging (json) and a request_id middleware
 - Access-Control-Allow-Origin: * on every response (storage is read only)
 - /metrics endpoint for Prometheus and /health
 - the storage gateway mounted under cfg.API_PREFIX
 - background policy reload tied to the application lifespan
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__, config
from ..error_handling import ConfigError, RequestError
from ..metrics.metrics import REQUESTS_TOTAL, start_metrics_server
from ..policy.loader import PolicyReloader
from ..policy.policy_engine import PolicyEngine
from ..storage.abstract import ObjectStore
from ..storage.factory import create_object_store
from .logging_config import configure_logging, set_request_id
from .storage_handler import StorageGateway, error_response, router

logger = logging.getLogger("sage_storage.api")

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def create_app(
    cfg: Optional[config.Config] = None,
    store: Optional[ObjectStore] = None,
    engine: Optional[PolicyEngine] = None,
) -> FastAPI:
    cfg = cfg or config.cfg
    configure_logging(cfg.LOG_LEVEL)

    engine = engine or PolicyEngine()
    reloader = None
    if cfg.POLICY_CONFIG_PATH:
        reloader = PolicyReloader(
            engine,
            cfg.POLICY_CONFIG_PATH,
            interval=cfg.POLICY_RELOAD_INTERVAL,
            username=cfg.POLICY_USERNAME,
            password=cfg.POLICY_PASSWORD,
        )
        if not reloader.reload_now() and engine.snapshot() is None:
            raise ConfigError(f"could not load authorization policy from {cfg.POLICY_CONFIG_PATH}")
    elif engine.snapshot() is None:
        logger.warning("no authorization policy configured; only public files can be served, and there are none")

    store = store or create_object_store(cfg)
    gateway = StorageGateway(
        store=store,
        engine=engine,
        root_folder=cfg.S3_ROOT_FOLDER,
        serve_mode=cfg.SERVE_MODE,
        presign_ttl=cfg.PRESIGN_TTL_SECONDS,
        chunk_size=cfg.STREAM_CHUNK_SIZE,
        realm=cfg.AUTH_REALM,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if reloader is not None:
            reloader.start()
        try:
            yield
        finally:
            if reloader is not None:
                reloader.stop()

    app = FastAPI(title="Sage Storage Gateway", version=__version__, lifespan=lifespan)
    app.state.config = cfg
    app.state.gateway = gateway
    app.state.policy_engine = engine

    @app.exception_handler(RequestError)
    async def request_error_handler(request: Request, exc: RequestError):
        return error_response(exc.status_code, exc.message, headers=exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # runs outside the middleware stack, so CORS has to be added here
        logger.exception("unhandled error for %s %s", request.method, request.url.path)
        return error_response(500, "internal server error", headers=CORS_HEADERS)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        # attach to logging context via ContextVar
        set_request_id(request_id)
        start = time.time()
        response = None
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = (time.time() - start) * 1000.0
            status = getattr(response, "status_code", 500)
            REQUESTS_TOTAL.labels(method=request.method, status=str(status)).inc()
            logger.info("http.request", extra={
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "remote": request.client.host if request.client else None,
                "latency_ms": elapsed_ms,
            })
        response.headers.update(CORS_HEADERS)
        response.headers["x-request-id"] = request_id
        return response

    # Expose Prometheus metrics endpoint
    @app.get("/metrics")
    async def metrics():
        return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health():
        return {"status": "ok", "policy_version": engine.version}

    app.include_router(router, prefix=cfg.API_PREFIX.rstrip("/"))
    return app


def main() -> None:
    import uvicorn

    cfg = config.cfg
    if cfg.METRICS_PORT > 0:
        start_metrics_server(cfg.METRICS_PORT)
    uvicorn.run(create_app(cfg), host=cfg.HOST, port=int(cfg.PORT), log_config=None)


if __name__ == "__main__":
    main()
