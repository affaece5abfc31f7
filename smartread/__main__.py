from __future__ import annotations

import uvicorn

from smartread.config import Settings
from smartread.logging_setup import setup_logging


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_dir)
    uvicorn.run(
        "smartread.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
