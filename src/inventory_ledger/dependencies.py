"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Generator

from fastapi import Request
from sqlalchemy.orm import Session

from .config import Settings
from .operations import StockService


def get_db(request: Request) -> Generator[Session, None, None]:
    """Provide a read session for FastAPI routes."""

    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_stock_service(request: Request) -> StockService:
    return request.app.state.stock_service


def pagination_params(request: Request, limit: int | None = None, offset: int = 0) -> tuple[int, int]:
    settings: Settings = request.app.state.settings
    return settings.clamp_page_size(limit), max(offset, 0)
