"""Application entry point for the brainboard leaderboard API."""

from __future__ import annotations

import uvicorn

from backend.app import create_app
from backend.app.core.config_core import get_settings


def main() -> None:
    """Run the FastAPI server with host/port from settings."""

    settings = get_settings()
    if settings.APP_RELOAD:
        uvicorn.run(
            "backend.app:create_app",
            factory=True,
            host=settings.APP_HOST,
            port=settings.APP_PORT,
            reload=True,
        )
        return
    uvicorn.run(create_app(), host=settings.APP_HOST, port=settings.APP_PORT)


if __name__ == "__main__":
    main()
