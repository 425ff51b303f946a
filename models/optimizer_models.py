"""Value objects passed between the optimizer stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class OptimizedImage:
	"""Outcome of a successful transform.

	`changed` is False when the re-encoding did not meet the gain threshold;
	in that case `data` and `mime` are the caller's original values.
	"""

	data: bytes
	mime: str
	changed: bool
	width: int = 0
	height: int = 0


@dataclass
class WorkResult:
	"""One record's transform outcome, handed from a worker to the collector."""

	image_id: str
	empty: bool = False
	result: Optional[OptimizedImage] = None
	error: Optional[BaseException] = None
	deferred: bool = False


@dataclass
class BatchStats:
	"""Per-batch counters reported by the batch processor.

	`skipped` counts rows another writer finished first; `deferred` counts rows
	left untouched because a stop was requested mid-batch.
	"""

	limit: int = 0
	found: int = 0
	resized: int = 0
	kept: int = 0
	empty: int = 0
	decode_errors: int = 0
	store_errors: int = 0
	abandoned: int = 0
	skipped: int = 0
	deferred: int = 0

	def as_dict(self) -> Dict[str, Any]:
		return asdict(self)
