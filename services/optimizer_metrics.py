"""In-process counters for the image optimizer.

An `OptimizerMetrics` instance is handed to the batch processor and
accumulates per-batch statistics, so an exporter or status endpoint can read
them without the pipeline touching process-wide globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from models.optimizer_models import BatchStats

COUNTER_FIELDS = (
	"found",
	"resized",
	"kept",
	"empty",
	"decode_errors",
	"store_errors",
	"abandoned",
	"skipped",
	"deferred",
)


@dataclass
class OptimizerMetrics:
	"""Cumulative optimizer counters and the most recent batch."""

	batches: int = 0
	failed_batches: int = 0
	totals: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in COUNTER_FIELDS})
	duration_seconds_total: float = 0.0
	last_duration_seconds: float = 0.0
	last_batch: Optional[BatchStats] = None

	def observe_batch(self, stats: BatchStats, duration_seconds: float, failed: bool = False) -> None:
		"""Fold one batch run into the counters."""
		self.batches += 1
		if failed:
			self.failed_batches += 1
		for name in COUNTER_FIELDS:
			self.totals[name] += getattr(stats, name)
		self.duration_seconds_total += duration_seconds
		self.last_duration_seconds = duration_seconds
		self.last_batch = stats

	def snapshot(self) -> Dict[str, Any]:
		"""Return a JSON-friendly copy of the counters."""
		return {
			"batches": self.batches,
			"failed_batches": self.failed_batches,
			"totals": dict(self.totals),
			"duration_seconds_total": round(self.duration_seconds_total, 6),
			"last_duration_seconds": round(self.last_duration_seconds, 6),
			"last_batch": self.last_batch.as_dict() if self.last_batch else None,
		}
