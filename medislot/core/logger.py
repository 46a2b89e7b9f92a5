import logging
import sys

def setup_logging():
    """
    Configure logging for the application.
    """
    logger = logging.getLogger("medislot")
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    # Uvicorn reloads import this module twice
    if not logger.handlers:
        logger.addHandler(handler)

    return logger

logger = setup_logging()
