"""Package logging.

Every module asks for its logger here so the debug switch lives in one
place. With IMMERS_DEBUG set, messages at DEBUG and above go to stderr and
to ~/.immers_client_debug.log (embedding apps often capture stdout/stderr,
which would otherwise hide them). Without it only warnings are shown.
"""
import logging
import sys
from pathlib import Path

from . import auth_config

DEBUG_LOG_FILE = Path.home() / ".immers_client_debug.log"
_ROOT = "immers_client"
_configured = False


def _configure_root() -> logging.Logger:
    global _configured
    root = logging.getLogger(_ROOT)
    if _configured:
        return root
    _configured = True

    level = logging.DEBUG if auth_config.DEBUG else logging.WARNING
    root.setLevel(level)
    if not auth_config.DEBUG:
        return root

    fmt = logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(level)
    stream.setFormatter(fmt)
    root.addHandler(stream)
    try:
        fh = logging.FileHandler(DEBUG_LOG_FILE, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root.addHandler(fh)
    except OSError:
        # never fail core logic for logging issues
        root.debug("log: could not open %s", DEBUG_LOG_FILE)
    return root


def get_logger(name: str) -> logging.Logger:
    _configure_root()
    return logging.getLogger(f"{_ROOT}.{name}")
