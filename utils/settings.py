"""Environment-driven settings for the image optimizer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env(name: str, default: T, parse: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return parse(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}") from exc


def _parse_bool(raw: str) -> bool:
    value = raw.lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(raw)


@dataclass(frozen=True)
class OptimizerSettings:
    """Tunable knobs of the optimizer pipeline.

    Attributes:
        enabled: Whether the application starts the background scheduler.
        max_width: Maximum output width in pixels.
        max_height: Maximum output height in pixels.
        webp_quality: Lossy WebP quality (0-100).
        min_gain_ratio: Minimum fractional size reduction required to rewrite.
        batch_size: Steady-state number of records per batch.
        initial_batch_size: Limit for the first, quick batch after startup.
        workers: Worker pool cap; None means the CPU count.
        use_processes: Run transforms in a process pool instead of threads.
        max_failures: Failed attempts before a record is given up on (0 = never).
        error_delay: Seconds to wait after a failed batch.
        partial_delay: Seconds to wait after a batch smaller than its limit.
        idle_delay: Seconds to wait after a batch that found nothing.
    """

    enabled: bool = True
    max_width: int = 300
    max_height: int = 300
    webp_quality: int = 85
    min_gain_ratio: float = 0.03
    batch_size: int = 10
    initial_batch_size: int = 5
    workers: Optional[int] = None
    use_processes: bool = True
    max_failures: int = 5
    error_delay: float = 5.0
    partial_delay: float = 10.0
    idle_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_width <= 0 or self.max_height <= 0:
            raise RuntimeError("Image bounds must be positive")
        if not 0 <= self.webp_quality <= 100:
            raise RuntimeError("WebP quality must be within 0..100")
        if self.batch_size <= 0 or self.initial_batch_size <= 0:
            raise RuntimeError("Batch sizes must be positive")
        if self.workers is not None and self.workers <= 0:
            raise RuntimeError("Worker count must be positive")
        if min(self.error_delay, self.partial_delay, self.idle_delay) < 0:
            raise RuntimeError("Scheduler delays must not be negative")

    @classmethod
    def from_env(cls) -> "OptimizerSettings":
        """Build settings from IMAGE_OPT_* environment variables."""
        defaults = cls()
        workers = _env("IMAGE_OPT_WORKERS", 0, int)
        return cls(
            enabled=_env("IMAGE_OPT_ENABLED", defaults.enabled, _parse_bool),
            max_width=_env("IMAGE_OPT_MAX_WIDTH", defaults.max_width, int),
            max_height=_env("IMAGE_OPT_MAX_HEIGHT", defaults.max_height, int),
            webp_quality=_env("IMAGE_OPT_WEBP_QUALITY", defaults.webp_quality, int),
            min_gain_ratio=_env("IMAGE_OPT_MIN_GAIN_RATIO", defaults.min_gain_ratio, float),
            batch_size=_env("IMAGE_OPT_BATCH_SIZE", defaults.batch_size, int),
            initial_batch_size=_env("IMAGE_OPT_INITIAL_BATCH_SIZE", defaults.initial_batch_size, int),
            workers=workers or None,
            use_processes=_env("IMAGE_OPT_USE_PROCESSES", defaults.use_processes, _parse_bool),
            max_failures=_env("IMAGE_OPT_MAX_FAILURES", defaults.max_failures, int),
            error_delay=_env("IMAGE_OPT_ERROR_DELAY", defaults.error_delay, float),
            partial_delay=_env("IMAGE_OPT_PARTIAL_DELAY", defaults.partial_delay, float),
            idle_delay=_env("IMAGE_OPT_IDLE_DELAY", defaults.idle_delay, float),
        )
