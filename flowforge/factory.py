"""Application factory for creating FastAPI instances."""

from datetime import datetime
from typing import Any, Callable, Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import httpx
from sqlalchemy import text

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.exceptions import WorkflowEngineError, create_error_response
from .core.event_stream import EventStream
from .core.execution_engine import ExecutionEngine
from .core.execution_store import ExecutionStore
from .core.executor_registry import ExecutorRegistry
from .core.workflow_store import WorkflowStore
from .storage.database import create_database_engine, create_session_factory, create_tables
from .storage.redis_client import create_redis_client, ping_redis
from .api.endpoints import router, init_dependencies, error_status_code


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.redis = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.workflow_store: Optional[WorkflowStore] = None
        self.execution_store: Optional[ExecutionStore] = None
        self.event_stream: Optional[EventStream] = None
        self.executor_registry: Optional[ExecutorRegistry] = None
        self.execution_engine: Optional[ExecutionEngine] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def setup_health_checks(session_factory: Callable, redis, execution_engine: ExecutionEngine,
                        config: AppConfig, logger) -> None:
    """Set up health check functions."""
    from .core.error_recovery import health_checker

    def check_database():
        try:
            with session_factory() as db:
                db.execute(text("SELECT 1"))
            return {"status": "healthy", "message": "Database connection successful"}
        except Exception as e:
            raise Exception(f"Database connection failed: {str(e)}")

    async def check_redis():
        try:
            return await ping_redis(redis)
        except Exception as e:
            raise Exception(f"Redis connection failed: {str(e)}")

    def check_job_queue():
        queue = execution_engine.job_queue
        if not queue.running:
            raise Exception("Job queue workers are not running")
        return {
            "status": "healthy",
            "message": "Job queue operational",
            **queue.stats()
        }

    health_checker.register_check("database", check_database, timeout=config.health_check_timeout)
    health_checker.register_check("redis", check_redis, timeout=config.health_check_timeout)
    health_checker.register_check("job_queue", check_job_queue, timeout=config.health_check_timeout)

    logger.info("Health checks registered")


def initialize_database(config: AppConfig, logger) -> Callable:
    """Create the engine and tables and return a session factory."""
    try:
        engine = create_database_engine(
            config.database_url,
            echo=config.database_echo,
            connect_args=config.get_database_connect_args()
        )
        create_tables(engine)
        logger.info("Database tables created")
        return create_session_factory(engine)
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, session_factory: Callable, redis,
                               http_client: httpx.AsyncClient, logger) -> ExecutionEngine:
    """Initialize stores, registry and execution engine and record them on ``app_state``."""
    try:
        event_stream = EventStream(redis)
        executor_registry = ExecutorRegistry.with_defaults(
            redis, http_client, config=config, workflow_log=event_stream
        )
        workflow_store = WorkflowStore(session_factory, known_node_types=executor_registry)
        execution_store = ExecutionStore(session_factory)
        execution_engine = ExecutionEngine(
            workflow_store,
            execution_store,
            event_stream,
            executor_registry,
            config=config
        )

        app_state.event_stream = event_stream
        app_state.executor_registry = executor_registry
        app_state.workflow_store = workflow_store
        app_state.execution_store = execution_store
        app_state.execution_engine = execution_engine

        logger.info(f"Core components initialized with node types: {', '.join(executor_registry)}")
        return execution_engine

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def create_lifespan_handler(config: AppConfig, redis_client: Any = None,
                            session_factory: Optional[Callable] = None,
                            http_client: Optional[httpx.AsyncClient] = None):
    """
    Create application lifespan handler.

    Clients passed in are used as-is and left open at shutdown; the ones
    created here are closed.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        owns_redis = redis_client is None
        owns_http = http_client is None

        factory = session_factory or initialize_database(config, logger)
        redis = redis_client if redis_client is not None else create_redis_client(config.redis_url)
        client = http_client or httpx.AsyncClient(timeout=config.http_timeout)

        app_state.config = config
        app_state.redis = redis
        app_state.http_client = client
        app_state.logger = logger

        try:
            execution_engine = initialize_core_components(config, factory, redis, client, logger)
            init_dependencies(
                workflow_store=app_state.workflow_store,
                execution_engine=execution_engine,
                executor_registry=app_state.executor_registry
            )
            setup_health_checks(factory, redis, execution_engine, config, logger)
            execution_engine.start_workers()
            logger.info("Application startup completed successfully")
        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")
        try:
            await execution_engine.shutdown()
            logger.info("Execution engine shutdown completed")
        except Exception as e:
            logger.error(f"Error during execution engine shutdown: {str(e)}")

        if owns_http:
            await client.aclose()
        if owns_redis:
            await redis.aclose()
            logger.info("Closed Redis client")

    return lifespan


def create_app(config: Optional[AppConfig] = None, redis_client: Any = None,
               session_factory: Optional[Callable] = None,
               http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Args:
        config: Settings; loaded from the environment when omitted
        redis_client: Prebuilt ``redis.asyncio`` client
        session_factory: Session factory over already created tables
        http_client: Prebuilt ``httpx.AsyncClient`` for httpRequest nodes
    """

    # Use provided config or load from environment
    if config is None:
        config = get_config()

    # Validate configuration
    validate_config(config)

    # Create FastAPI application
    app = FastAPI(
        title=config.app_name,
        description="A workflow execution engine for defining, running and monitoring node-based workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, redis_client, session_factory, http_client)
    )

    # Add CORS middleware
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    @app.exception_handler(WorkflowEngineError)
    async def workflow_engine_error_handler(request: Request, exc: WorkflowEngineError):
        get_logger(__name__).error(
            f"Workflow engine error in {request.method} {request.url.path}: {exc.message}",
            extra={"error_details": exc.to_dict()}
        )
        return JSONResponse(status_code=error_status_code(exc), content=create_error_response(exc))

    # Include API router
    app.include_router(router)

    # Add health check endpoints
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version
        }

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Detailed health check endpoint with component status."""
        from .core.error_recovery import health_checker

        try:
            results = await health_checker.run_all_checks()
            status_code = 200 if results["overall_status"] == "healthy" else 503

            return JSONResponse(
                status_code=status_code,
                content={
                    "service": config.app_name.lower().replace(" ", "-"),
                    "version": config.app_version,
                    **results
                }
            )
        except Exception as e:
            logger = get_logger(__name__)
            logger.error(f"Health check failed: {str(e)}")
            return JSONResponse(
                status_code=503,
                content={
                    "service": config.app_name.lower().replace(" ", "-"),
                    "overall_status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.utcnow().isoformat()
                }
            )
