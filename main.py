from __future__ import annotations

import os

import uvicorn

from fxjournal.utils.config import get_settings
from fxjournal.utils.logger import get_logger, setup_logging


def main() -> None:
    setup_logging()
    settings = get_settings()
    get_logger("main").info("journal_starting", db_path=settings.journal_db_path)

    port = int(os.environ.get("PORT", 5000))
    host = "0.0.0.0"

    uvicorn.run(
        "fxjournal.api.webapp:app",
        host=host,
        port=port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
