"""FastAPI main application."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, settings
from .clients import BaseModelClient, ClaudeCliClient
from .db import DatabaseConnection, UserRepository
from .services import AttachmentStore, DocumentStore, QuotaLedger, SessionManager, ToolAggregator
from .utils.logger import init_app_logger
from .api.v1 import conversations, tools, users


VERSION = "1.0.0"


def create_app(
    config: Optional[Settings] = None,
    model_client: Optional[BaseModelClient] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Settings to use instead of the environment-loaded ones
        model_client: Model client to use instead of the Claude CLI

    Returns:
        FastAPI application whose lifespan wires every service
    """
    config = config or settings
    logger = init_app_logger(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("=" * 70)
        logger.info("Starting Intake Server...")
        logger.info("=" * 70)
        logger.info(f"  Host: {config.host}")
        logger.info(f"  Port: {config.port}")
        logger.info(f"  Data Dir: {config.data_dir}")
        logger.info(f"  Database: {config.database_path}")
        logger.info(f"  Quota: {config.storage_quota_mb}MB per user, {config.max_attachment_bytes}B per file")
        logger.info(f"  Claude Binary: {config.claude_binary}")
        logger.info(f"  Claude Model: {config.claude_model or 'default'}")

        db_conn = DatabaseConnection(config.database_path)
        user_repo = UserRepository(db_conn.conn)
        store = DocumentStore(config.conversations_dir)
        ledger = QuotaLedger(user_repo, quota_mb=config.storage_quota_mb)
        attachments = AttachmentStore(
            store,
            ledger,
            allowed_media_types=config.get_allowed_media_types(),
            max_bytes=config.max_attachment_bytes
        )
        client = model_client or ClaudeCliClient(binary=config.claude_binary, model=config.claude_model)
        manager = SessionManager(store, attachments, user_repo, client, config)

        # Inject dependencies into routers
        conversations.session_manager = manager
        users.db_conn = db_conn
        users.session_manager = manager
        tools.aggregator = ToolAggregator(store)

        logger.info(f"Model client: {client.get_client_type()}")
        logger.info("Intake Server started")

        yield

        # Shutdown
        logger.info("Shutting down Intake Server...")
        conversations.session_manager = None
        users.db_conn = None
        users.session_manager = None
        tools.aggregator = None
        db_conn.close()
        logger.info("Intake Server shut down")

    app = FastAPI(
        title="Intake Server",
        description="Interview intake conversations and tool usage aggregation",
        version=VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(conversations.router)
    app.include_router(tools.router)
    app.include_router(users.router)

    @app.get("/health")
    async def health():
        """
        Simple health check endpoint.

        Returns:
            Health status
        """
        return {"status": "healthy", "version": VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "intake.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
