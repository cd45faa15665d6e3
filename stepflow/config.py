"""Configuration management for the StepFlow layout and simulation service."""

import os
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="StepFlow Workflow Service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Simulator settings
    step_min_processing_ms: int = Field(default=200, description="Lower bound of simulated step work time")
    step_max_processing_ms: int = Field(default=1200, description="Upper bound of simulated step work time")
    random_failure_rate: float = Field(default=0.2, description="Failure probability of the 'random' behaviour")
    max_plan_steps: int = Field(default=100, description="Upper bound on execution plan length")

    # Layout settings
    layout_spacing_x: int = Field(default=280, description="Default horizontal spacing between nodes")
    layout_spacing_y: int = Field(default=150, description="Default vertical spacing between nodes")
    layout_padding_x: int = Field(default=50, description="Default left padding")
    layout_padding_y: int = Field(default=50, description="Default top padding")

    # WebSocket settings
    websocket_max_connections: int = Field(
        default=100,
        description="Maximum WebSocket connections"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log records")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Performance monitoring settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )
    enable_performance_monitoring: bool = Field(
        default=True,
        description="Enable performance monitoring middleware"
    )

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('random_failure_rate')
    @classmethod
    def validate_failure_rate(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("Random failure rate must be between 0 and 1")
        return v

    @field_validator('max_plan_steps')
    @classmethod
    def validate_max_plan_steps(cls, v):
        if v < 1:
            raise ValueError("Maximum plan steps must be at least 1")
        return v

    @model_validator(mode='after')
    def validate_processing_window(self):
        """Ensure the simulated work time window is well formed."""
        if self.step_min_processing_ms < 0:
            raise ValueError("Minimum processing time cannot be negative")
        if self.step_max_processing_ms < self.step_min_processing_ms:
            raise ValueError("Maximum processing time must not be below the minimum")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.reload

    def get_simulator_settings(self) -> Dict[str, Any]:
        """Keyword arguments for WorkflowSimulator."""
        return {
            "min_processing_ms": self.step_min_processing_ms,
            "max_processing_ms": self.step_max_processing_ms,
            "random_failure_rate": self.random_failure_rate,
            "max_plan_steps": self.max_plan_steps
        }

    def get_layout_defaults(self) -> Dict[str, Any]:
        """Default LayoutOptions as a wire-format mapping."""
        return {
            "spacing": {"x": self.layout_spacing_x, "y": self.layout_spacing_y},
            "padding": {"x": self.layout_padding_x, "y": self.layout_padding_y}
        }

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from STEPFLOW_* environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"STEPFLOW_{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return value.split(',') if value else default
            return type_func(value)

        return cls(
            app_name=get_env("APP_NAME", "StepFlow Workflow Service"),
            app_version=get_env("APP_VERSION", "1.0.0"),
            debug=get_env("DEBUG", False, bool),
            host=get_env("HOST", "0.0.0.0"),
            port=get_env("PORT", 8000, int),
            reload=get_env("RELOAD", False, bool),
            step_min_processing_ms=get_env("STEP_MIN_PROCESSING_MS", 200, int),
            step_max_processing_ms=get_env("STEP_MAX_PROCESSING_MS", 1200, int),
            random_failure_rate=get_env("RANDOM_FAILURE_RATE", 0.2, float),
            max_plan_steps=get_env("MAX_PLAN_STEPS", 100, int),
            layout_spacing_x=get_env("LAYOUT_SPACING_X", 280, int),
            layout_spacing_y=get_env("LAYOUT_SPACING_Y", 150, int),
            layout_padding_x=get_env("LAYOUT_PADDING_X", 50, int),
            layout_padding_y=get_env("LAYOUT_PADDING_Y", 50, int),
            websocket_max_connections=get_env("WEBSOCKET_MAX_CONNECTIONS", 100, int),
            log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
            log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            log_file=get_env("LOG_FILE", None),
            log_structured=get_env("LOG_STRUCTURED", False, bool),
            log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
            log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
            slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
            enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
            cors_origins=get_env("CORS_ORIGINS", ["*"], list),
            cors_methods=get_env("CORS_METHODS", ["GET", "POST", "DELETE"], list)
        )


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and the environment."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def set_config(config: AppConfig) -> None:
    """Install ``config`` as the global configuration."""
    global _config
    _config = config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """Validate configuration settings that depend on the environment."""
    errors = []

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.websocket_max_connections > 1000:
        errors.append("High WebSocket connection limit may impact performance")

    if errors:
        raise ValueError(f"Configuration validation failed: {'; '.join(errors)}")


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        enable_performance_monitoring=True
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        enable_performance_monitoring=True,
        cors_origins=[]
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration with instantaneous simulated steps."""
    return AppConfig(
        debug=True,
        log_level=LogLevel.WARNING,
        step_min_processing_ms=0,
        step_max_processing_ms=0,
        random_failure_rate=0.0
    )
