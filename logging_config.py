import logging
import os
import sys


def configure_logging(level: str | None = None) -> None:
    """
    Configure logging for the whole app.
    Call this once from the entry point (script, worker or web app factory).
    """
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # SQL echo is only wanted when explicitly debugging the storage layer.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
