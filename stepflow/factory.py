"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.layout_engine import LayoutEngine
from .core.simulator import WorkflowSimulator
from .core.validation import WorkflowValidator
from .core.websocket_manager import TraceEventBroadcaster
from .models import LayoutOptions
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.layout_engine: Optional[LayoutEngine] = None
        self.simulator: Optional[WorkflowSimulator] = None
        self.validator: Optional[WorkflowValidator] = None
        self.broadcaster: Optional[TraceEventBroadcaster] = None


# Global application state
app_state = ApplicationState()


def initialize_core_components(config: AppConfig) -> ApplicationState:
    """Build the engines and wire the broadcaster to the simulator."""
    logger = get_logger(__name__)

    state = ApplicationState()
    state.config = config
    state.layout_engine = LayoutEngine(
        default_options=LayoutOptions.model_validate(config.get_layout_defaults())
    )
    state.simulator = WorkflowSimulator(**config.get_simulator_settings())
    state.validator = WorkflowValidator()
    state.broadcaster = TraceEventBroadcaster()
    state.broadcaster.attach(state.simulator)

    logger.info("Core components initialized")
    return state


def graceful_shutdown(state: ApplicationState) -> None:
    """Stop the active simulation and unhook the broadcaster."""
    logger = get_logger(__name__)
    logger.info(f"Shutting down {state.config.app_name}")

    if state.simulator is not None and state.simulator.stop_simulation():
        logger.info("Active simulation stopped")

    if state.broadcaster is not None:
        state.broadcaster.detach()


def create_lifespan_handler(state: ApplicationState):
    """Create the application lifespan handler for ``state``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = get_logger(__name__)
        logger.info(f"Starting {state.config.app_name} v{state.config.app_version}")
        yield
        graceful_shutdown(state)

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure FastAPI application instance."""
    if config is None:
        config = get_config()

    validate_config(config)

    setup_logging(
        level=config.log_level.value,
        log_file=config.log_file,
        log_format=config.log_format,
        structured=config.log_structured,
        max_size=config.log_max_size,
        backup_count=config.log_backup_count
    )

    state = initialize_core_components(config)
    app_state.__dict__.update(state.__dict__)

    init_dependencies(
        layout_engine=state.layout_engine,
        simulator=state.simulator,
        validator=state.validator,
        broadcaster=state.broadcaster
    )

    app = FastAPI(
        title=config.app_name,
        description="Layout computation, validation and execution simulation for step-based workflows",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(state)
    )
    app.state.components = state

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    if config.enable_performance_monitoring:
        from .core.middleware import ErrorHandlingMiddleware, PerformanceMonitoringMiddleware

        app.add_middleware(ErrorHandlingMiddleware)
        app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)

    app.include_router(router)

    add_health_endpoints(app, config, state)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig, state: ApplicationState) -> None:
    """Add health check endpoints to the application."""

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Health check with simulator and streaming status."""
        return {
            "status": "healthy",
            "service": config.app_name.lower().replace(" ", "-"),
            "version": config.app_version,
            "simulator": {
                "simulating": state.simulator.is_simulating,
                "traces": len(state.simulator.get_all_traces())
            },
            "websocket_connections": state.broadcaster.get_connection_count()
        }


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
