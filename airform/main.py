"""
FastAPI application entrypoint for the Airtable form service.
"""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from airform.api.airtable import router as airtable_router
from airform.api.auth import router as auth_router
from airform.api.forms import router as forms_router
from airform.api.webhooks import router as webhooks_router
from airform.core.config import get_settings
from airform.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Airform",
        version="0.1.0",
        description="Public forms backed by Airtable tables.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(auth_router, prefix="/auth")
    app.include_router(airtable_router, prefix="/api")
    app.include_router(forms_router, prefix="/f")
    app.include_router(webhooks_router, prefix="/webhooks")
    return app


app = create_app()


def main() -> None:
    """Serve the API on the configured port."""
    settings = get_settings()
    uvicorn.run(
        "airform.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover - script entry point
    main()


__all__ = ["app", "create_app", "main"]
