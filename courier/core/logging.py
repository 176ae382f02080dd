import logging

from courier.core.settings import settings


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    # uvicorn installs its own handlers; keep our loggers at the requested level
    logging.getLogger("courier").setLevel((level or settings.log_level).upper())
