"""Root logger setup shared by the API server and the ingestion CLI."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(log_level: str = "INFO") -> None:
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT, force=True)
    # One line per outbound request is too chatty at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
