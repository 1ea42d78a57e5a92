"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from bluegreen.config import get_settings
from bluegreen.infrastructure.observability.logging import setup_logging


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    setup_logging(settings.observability.log_level)

    uvicorn.run(
        "bluegreen.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.debug,
        log_level=settings.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
