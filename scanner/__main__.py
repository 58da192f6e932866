"""Run the scanner API with uvicorn."""
from __future__ import annotations

import uvicorn

from .config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "scanner.main:create_app",
        factory=True,
        host=settings.scanner_host,
        port=settings.scanner_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
