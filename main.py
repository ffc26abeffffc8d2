"""
Tama Assistant — Entry Point.

Single entry point: `python main.py` starts the HTTP server that receives
Telegram updates and scheduler callbacks.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

import uvicorn

from tama.config import settings
from tama.factory import create_app


def main() -> None:
    """Build the app and serve it."""
    logging.getLogger(__name__).info("Starting Tama on %s:%d", settings.HOST, settings.PORT)
    uvicorn.run(create_app(), host=settings.HOST, port=settings.PORT, log_level="info")


if __name__ == "__main__":
    main()
