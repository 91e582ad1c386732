"""
Health Routes
=============

Static health check endpoints; every configured path answers ``ok``.
"""

from typing import Iterable

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse


async def health_check() -> PlainTextResponse:
    """Basic health check endpoint."""
    return PlainTextResponse("ok")


def build_health_router(paths: Iterable[str]) -> APIRouter:
    """Router with one GET route per health path."""
    router = APIRouter(tags=["Health"])
    for path in paths:
        router.add_api_route(
            path,
            health_check,
            methods=["GET"],
            response_class=PlainTextResponse,
            name=f"health:{path}",
        )
    return router
