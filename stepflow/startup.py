"""Application startup script and CLI interface."""

import argparse
import asyncio
import json
import random
import sys
from typing import Any, Dict

from pydantic import ValidationError

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import WorkflowEngineError
from .core.logging import get_logger, setup_logging
from .core.layout_engine import LayoutEngine
from .core.simulator import WorkflowSimulator
from .core.validation import WorkflowValidator
from .models import FlowConfig, LayoutAlgorithm, LayoutOptions, SimulationOptions


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="StepFlow - workflow layout, validation and execution simulation"
    )

    # Server configuration
    parser.add_argument("--host", help="Host to bind the server to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port to bind the server to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")

    # Logging configuration
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the HTTP server")

    layout_parser = subparsers.add_parser("layout", help="Lay out a graph file and print the result")
    layout_parser.add_argument("graph_file", help="JSON file with 'nodes' and 'edges'")
    layout_parser.add_argument(
        "--algorithm",
        default=LayoutAlgorithm.HIERARCHICAL.value,
        help="hierarchical, force-directed, circular, tree or grid"
    )
    layout_parser.add_argument("--direction", choices=["TB", "LR"], default="TB", help="Layout direction")

    validate_parser = subparsers.add_parser("validate", help="Validate a flow configuration file")
    validate_parser.add_argument("flow_file", help="JSON flow configuration")
    validate_parser.add_argument("--request", help="Workflow to validate (default: all)")

    simulate_parser = subparsers.add_parser("simulate", help="Simulate a workflow and print the trace")
    simulate_parser.add_argument("flow_file", help="JSON flow configuration")
    simulate_parser.add_argument("request", help="Workflow to simulate")
    simulate_parser.add_argument(
        "--fail",
        action="append",
        default=[],
        metavar="STEP",
        help="Force a step id or step type to fail (repeatable)"
    )
    simulate_parser.add_argument("--seed", type=int, help="Seed for simulated timings and outcomes")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.reload:
        config.reload = args.reload
    if args.log_level:
        config.log_level = LogLevel(args.log_level)
    if args.log_file:
        config.log_file = args.log_file
    if args.debug:
        config.debug = args.debug

    return config


def read_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def run_server(config: AppConfig):
    """Run the HTTP server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")

    if config.reload:
        uvicorn.run("stepflow.main:app", **config.get_uvicorn_config())
    else:
        uvicorn.run(create_app(config), **config.get_uvicorn_config())


def run_layout_command(args: argparse.Namespace, config: AppConfig):
    graph = read_json(args.graph_file)
    engine = LayoutEngine(default_options=LayoutOptions.model_validate(config.get_layout_defaults()))
    result = engine.apply_layout(
        graph.get("nodes", []),
        graph.get("edges", []),
        args.algorithm,
        {"direction": args.direction}
    )
    print(result.model_dump_json(by_alias=True, indent=2))


def run_validate_command(args: argparse.Namespace):
    validator = WorkflowValidator()
    result = validator.validate_workflow(read_json(args.flow_file), args.request)

    print(validator.get_validation_summary(result))
    for issue in result.issues:
        location = f" [{issue.node_id}]" if issue.node_id else ""
        print(f"  {issue.type.value.upper():8}{issue.title}{location}: {issue.description}")

    if not result.is_valid:
        sys.exit(1)


async def run_simulate_command(args: argparse.Namespace, config: AppConfig):
    flow_config = FlowConfig.model_validate(read_json(args.flow_file))
    simulator = WorkflowSimulator(
        rng=random.Random(args.seed) if args.seed is not None else None,
        **config.get_simulator_settings()
    )
    options = SimulationOptions(mock_step_behavior={step: "failure" for step in args.fail})

    trace_id = simulator.create_trace(args.request)
    await simulator.start_simulation(trace_id, flow_config, args.request, options)

    trace = simulator.get_trace(trace_id)
    summary = simulator.get_execution_summary(trace_id)

    print(f"Trace {trace.id}: {trace.status.value}")
    for index, step in enumerate(trace.steps):
        detail = f" ({step.error})" if step.error else ""
        print(f"  {index + 1:3}. {step.node_id:<24} {step.status.value:<8} {step.duration or 0:>6} ms{detail}")
    if "error" in trace.context:
        print(f"  error: {trace.context['error']}")
    print(
        f"Steps: {summary.total_steps} total, {summary.successful_steps} succeeded, "
        f"{summary.failed_steps} failed; average {summary.average_step_duration:.0f} ms"
    )


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Step Processing: {config.step_min_processing_ms}-{config.step_max_processing_ms} ms")
    print(f"  Random Failure Rate: {config.random_failure_rate}")
    print(f"  Max Plan Steps: {config.max_plan_steps}")
    print(f"  Layout Spacing: {config.layout_spacing_x} x {config.layout_spacing_y}")
    print(f"  WebSocket Max Connections: {config.websocket_max_connections}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)
        validate_config(config)

        if args.command in ("layout", "validate", "simulate"):
            setup_logging(level=config.log_level.value, log_file=config.log_file)

        if args.command == "run" or args.command is None:
            run_server(config)
        elif args.command == "layout":
            run_layout_command(args, config)
        elif args.command == "validate":
            run_validate_command(args)
        elif args.command == "simulate":
            asyncio.run(run_simulate_command(args, config))
        elif args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
        else:
            parser.print_help()

    except (WorkflowEngineError, ValidationError, ValueError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
