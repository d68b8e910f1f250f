"""
FastAPI application entry point.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quadratic_api.config import get_settings
from quadratic_api.routes import files_router, router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Quadratic API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    app.include_router(files_router, prefix="/files")
    return app


app = create_app()
