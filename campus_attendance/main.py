import time
import logging
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from .application.use_cases.resolve_role import RoleResolutionService
from .config import Settings, settings as default_settings
from .domain.errors import AlreadyRegistered, AttendanceError
from .infrastructure.chain import ChainGateway
from .infrastructure.contract import ContractAccessor
from .infrastructure.db import Base, make_session_factory
from .infrastructure.metrics import (
    metrics_endpoint,
    http_requests_total,
    http_request_duration_seconds
)
from .infrastructure.mock_ledger import MockLedger
from .infrastructure.repositories import in_memory_repositories, sql_repositories
from .infrastructure.supervisor import ChainSupervisor
from .interfaces.http.ratelimit import limiter
from .interfaces.http.routers import attendance as attendance_router
from .interfaces.http.routers import courses as courses_router
from .interfaces.http.routers import ethereum as ethereum_router
from .interfaces.http.routers import students as students_router
from .interfaces.http.routers import users as users_router

VERSION = "0.1.0"

logger = structlog.get_logger()


def configure_logging(level_name: str) -> None:
    # Настройка структурированного логирования
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_ledger(settings: Settings) -> MockLedger:
    if settings.LEDGER_BACKEND == "sql":
        engine, sessions = make_session_factory(settings.DATABASE_URL)
        Base.metadata.create_all(bind=engine)
        repos = sql_repositories(sessions)
    else:
        repos = in_memory_repositories()
    return MockLedger(owner=settings.DEV_WALLET_ADDRESS, repositories=repos, seed=settings.SEED_MOCK_DATA)


def error_body(message: str, code: str, **extra) -> dict:
    return {"success": False, "message": message, "error": code, **extra}


def create_app(settings: Settings | None = None, gateway: ChainGateway | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Campus Attendance Service", version=VERSION)

    gateway = gateway or ChainGateway(
        settings.ETHEREUM_RPC_URL,
        retries=settings.ETH_CONNECTION_RETRIES,
        retry_delay=settings.ETH_CONNECTION_RETRY_DELAY,
        timeout=settings.ETH_CONNECTION_TIMEOUT,
        local_markers=settings.LOCAL_NODE_MARKERS,
    )
    accessor = ContractAccessor(gateway, build_ledger(settings), settings)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.accessor = accessor
    app.state.role_service = RoleResolutionService(
        accessor, settings.EMERGENCY_ADMIN_KEY, settings.EMERGENCY_SYSTEM_KEY,
    )
    app.state.supervisor = ChainSupervisor(
        gateway, accessor, settings.HEALTH_CHECK_INTERVAL, settings.CONTRACT_POLL_INTERVAL,
    )
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Добавляем middleware для правильной кодировки и метрик
    @app.middleware("http")
    async def add_charset_header(request: Request, call_next):
        start_time = time.time()
        method = request.method
        path = request.url.path

        response = await call_next(request)

        if response.headers.get("content-type", "").startswith("application/json"):
            response.headers["content-type"] = "application/json; charset=utf-8"

        # Метрики
        duration = time.time() - start_time
        status_code = response.status_code
        http_requests_total.labels(method=method, endpoint=path, status=status_code).inc()
        http_request_duration_seconds.labels(method=method, endpoint=path).observe(duration)

        # Логирование
        logger.info(
            "http_request",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2)
        )

        return response

    @app.exception_handler(AttendanceError)
    async def attendance_error_handler(request: Request, exc: AttendanceError):
        extra = {}
        if isinstance(exc, AlreadyRegistered) and exc.existing is not None:
            s = exc.existing
            extra["userInfo"] = {"address": s.address, "name": s.name,
                                 "studentId": s.student_id, "isRegistered": s.is_registered}
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code, **extra))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail), "HTTPError"),
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content=error_body(
            message, "ValidationError", details=[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
        ))

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate_limit_exceeded", path=request.url.path, limit=str(exc.detail))
        return JSONResponse(status_code=429, content=error_body("Too many requests, try again later", "RateLimited"))

    @app.on_event("startup")
    def on_startup():
        logger.info("Starting campus attendance service", version=VERSION,
                    environment=settings.ENVIRONMENT, rpc_url=settings.ETHEREUM_RPC_URL)
        app.state.supervisor.start()

    @app.on_event("shutdown")
    def on_shutdown():
        app.state.supervisor.stop()

    @app.get("/health")
    def health():
        return {"status": "ok", "backend": app.state.accessor.mode,
                "chainConnected": app.state.gateway.is_reachable}

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint"""
        return metrics_endpoint()

    app.include_router(users_router.router)
    app.include_router(students_router.router)
    app.include_router(courses_router.router)
    app.include_router(attendance_router.router)
    app.include_router(ethereum_router.router)
    return app


app = create_app()
