from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from inventory_engine.config import Settings

_HANDLER_MARK = '_inventory_engine_handler'


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARK, True)
    return handler


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure the root logger once: console output plus an optional rotating file."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    fmt = logging.Formatter(settings.log_format)

    root = logging.getLogger()
    root.setLevel(level)
    # avoid duplicate handlers on repeated setup (reloads, tests)
    for handler in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(handler)

    console = _mark(logging.StreamHandler())
    console.setFormatter(fmt)
    console.setLevel(level)
    root.addHandler(console)

    handlers: list[logging.Handler] = [console]
    if settings.log_file:
        log_path = Path(settings.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _mark(
            logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding='utf-8')
        )
        file_handler.setFormatter(fmt)
        file_handler.setLevel(level)
        root.addHandler(file_handler)
        handlers.append(file_handler)

    # uvicorn installs its own handlers; route its loggers through ours
    for name in ('uvicorn', 'uvicorn.error', 'uvicorn.access', 'fastapi'):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        lg.handlers = [h for h in lg.handlers if not getattr(h, _HANDLER_MARK, False)]
        lg.propagate = False
        for handler in handlers:
            lg.addHandler(handler)

    return logging.getLogger('inventory_engine')
