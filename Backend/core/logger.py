import logging
import sys

from core.environment import settings


def configure_uvicorn_logger():
    logging.getLogger("uvicorn").handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()
    get_logger("uvicorn")
    get_logger("uvicorn.access")


def get_logger(name: str = "datatables_app"):
    logger = logging.getLogger(name)
    if settings.LOG_LEVEL:
        log_level = settings.LOG_LEVEL.upper()
    elif settings.ENVIRONMENT.lower() in ["production", "staging"]:
        log_level = logging.INFO
    else:
        log_level = logging.DEBUG
    logger.setLevel(log_level)

    # get_logger may be called repeatedly for the same name
    if logger.handlers:
        return logger

    stream_handler = logging.StreamHandler(sys.stdout)
    log_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(name)s] [%(filename)s] [%(funcName)s]: %(message)s"
    )
    stream_handler.setFormatter(log_formatter)
    logger.addHandler(stream_handler)
    return logger


app_logger = get_logger()


__all__ = ["app_logger", "configure_uvicorn_logger", "get_logger"]
