import logging
from typing import Optional, Union

_QUIET_LOGGERS = ("aiohttp.access", "uvicorn.access")


def resolve_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    if isinstance(level, int):
        return level
    if not level:
        return default
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: Union[int, str, None] = logging.INFO, log_format: Optional[str] = None) -> None:
    """
    Configure process-wide logging once for the relay.

    Accepts a level number or name (``"DEBUG"``, ``"info"``). Later calls are
    ignored when the root logger already has handlers.
    """
    if logging.getLogger().handlers:
        return

    fmt = log_format or "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=resolve_level(level), format=fmt)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
