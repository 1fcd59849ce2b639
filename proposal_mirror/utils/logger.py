import logging
import os

# Shared logger for the mirror; components prefix their messages with their name
logger = logging.getLogger("proposal-mirror")
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
logger.propagate = False  # uvicorn's root handler would print every record twice

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s - [%(levelname)s] - %(name)s - %(funcName)s() - %(message)s")
    )
    logger.addHandler(handler)
