import logging

from boxoffice.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # requests/urllib3 are chatty at DEBUG; gateway calls are logged by the adapter
    logging.getLogger("urllib3").setLevel(logging.WARNING)
