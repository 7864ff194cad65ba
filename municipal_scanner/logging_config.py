from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from dotenv import load_dotenv


_CONFIGURED = False

# pdfminer warns on every malformed xref; httpx logs each request at INFO
_NOISY_LOGGERS = ("pdfminer", "httpx", "httpcore", "PyPDF2")


def configure_logging(level_override: Optional[str] = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        if level_override:
            logging.getLogger("municipal_scanner").setLevel(_resolve_level(level_override))
        return

    try:
        load_dotenv()
    except Exception:
        pass

    level = _resolve_level(level_override or os.getenv("MSCAN_LOG_LEVEL") or "INFO")

    root = logging.getLogger("municipal_scanner")
    root.setLevel(level)
    root.propagate = False

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    log_file = os.getenv("MSCAN_LOG_FILE")
    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True


def _resolve_level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


@contextmanager
def span(logger: logging.Logger, step: str) -> Iterator[Dict[str, Any]]:
    """Time a pipeline step.

    The yielded dict collects counters (documents, opportunities, ...) that are
    appended to the ``step.end`` line.
    """
    start = time.monotonic()
    fields: Dict[str, Any] = {}
    logger.info("step.start: %s", step)
    try:
        yield fields
    finally:
        dur_ms = int((time.monotonic() - start) * 1000)
        extra = "".join(f" {k}={v}" for k, v in fields.items())
        logger.info("step.end: %s | durationMs=%d%s", step, dur_ms, extra)
