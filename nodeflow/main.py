"""FastAPI application factory for the Nodeflow workflow engine."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, load_config
from .core.action_registry import ActionRegistry
from .core.execution_engine import WorkflowExecutionEngine
from .core.logging import get_logger, setup_logging
from .core.middleware import ErrorHandlingMiddleware
from .tools.builtin_actions import register_builtin_actions


def create_lifespan_handler(config: AppConfig):
    """Create the application lifespan handler for a configuration."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        action_registry = ActionRegistry()
        register_builtin_actions(action_registry)

        execution_engine = WorkflowExecutionEngine.from_config(config, action_registry=action_registry)

        app.state.config = config
        app.state.action_registry = action_registry
        app.state.execution_engine = execution_engine
        init_dependencies(execution_engine=execution_engine, action_registry=action_registry)

        logger.info("Application startup completed successfully")

        yield

        # Shutdown
        active = execution_engine.get_active_executions()
        if active:
            logger.warning(f"Shutting down with {len(active)} executions still running")
        logger.info(f"Shutting down {config.app_name}")

    return lifespan


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Create and configure a FastAPI application instance."""
    if config is None:
        config = get_config()

    app = FastAPI(
        title=config.app_name,
        description="Executes visual workflow graphs and reports fully traced execution records",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    return app


def run() -> None:
    """Run the API under uvicorn with the environment configuration."""
    import uvicorn

    config = load_config()
    options = config.get_uvicorn_config()
    # Reload needs an import string, not an app instance.
    options.pop("reload")
    uvicorn.run(create_app(config), **options)


if __name__ == "__main__":
    run()
