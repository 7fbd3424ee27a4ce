"""Command line entry point: serve the API or manage the database."""

import argparse
import sys
from typing import List, Optional

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import ConfigurationError
from .core.logging import setup_logging, get_logger


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        description="Flowforge - a workflow execution engine"
    )

    # Server configuration
    parser.add_argument("--host", help="Host to bind the server to")
    parser.add_argument("--port", type=int, help="Port to bind the server to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )
    parser.add_argument("--config", help="Path to a .env configuration file")

    # Backing services
    parser.add_argument("--database-url", help="Database connection URL")
    parser.add_argument("--redis-url", help="Redis connection URL")

    # Logging configuration
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )
    parser.add_argument("--log-file", help="Path to log file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")

    # Job queue configuration
    parser.add_argument("--worker-concurrency", type=int, help="Worker tasks for asynchronous executions")

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the workflow engine server")

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""

    # Load environment-specific configuration
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    # Override with command line arguments
    overrides = {
        "host": args.host,
        "port": args.port,
        "database_url": args.database_url,
        "redis_url": args.redis_url,
        "log_file": args.log_file,
        "worker_concurrency": args.worker_concurrency,
    }
    updates = {key: value for key, value in overrides.items() if value is not None}
    if args.log_level:
        updates["log_level"] = LogLevel(args.log_level)
    if args.reload:
        updates["reload"] = True
    if args.debug:
        updates["debug"] = True

    return config.model_copy(update=updates)


def run_server(config: AppConfig):
    """Run the workflow engine server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server on {config.host}:{config.port}")

    uvicorn.run(create_app(config), **config.get_uvicorn_config())


def run_database_command(command: Optional[str], config: AppConfig):
    """Run database management commands."""
    from .storage.database import create_database_engine, create_tables, drop_tables

    logger = get_logger(__name__)
    engine = create_database_engine(
        config.database_url,
        echo=config.database_echo,
        connect_args=config.get_database_connect_args()
    )

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables(engine)
        logger.info("Database tables created successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables(engine)
        create_tables(engine)
        logger.info("Database reset completed successfully")

    else:
        raise SystemExit("Unknown database command, expected 'init' or 'reset'")


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Redis URL: {config.redis_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Worker Concurrency: {config.worker_concurrency}")
    print(f"  Job Attempts: {config.job_attempts}")
    print(f"  Cooperative Cancellation: {config.cooperative_cancellation}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        config = load_configuration(args)
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured
        )

        command = args.command or "run"
        if command == "run":
            validate_config(config)
            run_server(config)
        elif command == "db":
            run_database_command(args.db_command, config)
        elif command == "config":
            if args.config_command == "validate":
                validate_config(config)
                print("Configuration is valid")
            else:
                show_configuration(config)
        return 0

    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
