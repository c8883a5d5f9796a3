"""Namespaced debug logging for the fire solver.

Set FIRESIM_DEBUG=1 or call ``enable(True)`` to log stage dispatches,
buffer lifecycle and orchestrator transitions under the ``firesim`` logger.
Records carry the thread name because ticks can be drained on a worker.

``summarize_passes`` and ``describe_grid`` render command graphs and grids
compactly for those log lines.
"""

from __future__ import annotations

from collections import Counter
import logging
import os
import threading
from typing import IO, Any, Iterable, Optional

_NAMESPACE = "firesim"
_FORMAT = "%(asctime)s | %(threadName)s | %(name)s | %(message)s"

_ENABLED = bool(int(os.getenv("FIRESIM_DEBUG", "0") or "0"))
_LOCK = threading.Lock()


def _root() -> logging.Logger:
    return logging.getLogger(_NAMESPACE)


def _install_handler(lg: logging.Logger, stream: Optional[IO[str]]) -> None:
    for h in lg.handlers:
        if getattr(h, "_firesim", False):
            if stream is not None:
                h.setStream(stream)
            return
    h = logging.StreamHandler(stream)
    h.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%H:%M:%S"))
    h._firesim = True  # type: ignore[attr-defined]
    lg.addHandler(h)


def enable(flag: bool = True, *, level: int = logging.DEBUG, stream: Optional[IO[str]] = None) -> None:
    """Turn solver logging on or off.

    ``stream`` redirects the solver's handler (stderr by default); it is
    kept across later calls until another stream is given.
    """
    global _ENABLED
    with _LOCK:
        _ENABLED = bool(flag)
        lg = _root()
        lg.propagate = False
        if _ENABLED:
            _install_handler(lg, stream)
            lg.setLevel(level)
        else:
            lg.setLevel(logging.WARNING)


def is_enabled() -> bool:
    return _ENABLED


def dbg(name: str) -> logging.Logger:
    """Child logger ``firesim.<name>``; attaches the handler on first use when enabled."""
    if _ENABLED and not _root().handlers:
        enable(True)
    return logging.getLogger(f"{_NAMESPACE}.{name}")


def summarize_passes(passes: Iterable[Any]) -> str:
    """Per-kernel dispatch counts in submission order, e.g. ``pressure x8, swap x12``."""
    counts = Counter(getattr(p, "kernel_id", p) for p in passes)
    if not counts:
        return "(empty)"
    return ", ".join(f"{kid} x{n}" for kid, n in counts.items())


def describe_grid(arr: Any) -> str:
    try:
        return (
            f"shape={tuple(arr.shape)} min={float(arr.min()):.3e} "
            f"max={float(arr.max()):.3e} mean={float(arr.mean()):.3e}"
        )
    except (AttributeError, TypeError, ValueError):
        return repr(arr)


__all__ = ["enable", "is_enabled", "dbg", "summarize_passes", "describe_grid"]
