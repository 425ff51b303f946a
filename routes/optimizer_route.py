"""FastAPI routes exposing read-only image optimizer status."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter(prefix="/optimizer", tags=["optimizer"])


class OptimizerStatus(BaseModel):
	enabled: bool
	running: bool
	batches: int = 0
	failed_batches: int = 0
	totals: Dict[str, int] = {}
	duration_seconds_total: float = 0.0
	last_duration_seconds: float = 0.0
	last_batch: Optional[Dict[str, Any]] = None


@router.get("/status", response_model=OptimizerStatus)
async def optimizer_status(request: Request) -> OptimizerStatus:
	"""Return cumulative optimizer counters and the last batch summary."""
	settings = getattr(request.app.state, "optimizer_settings", None)
	if settings is None:
		raise HTTPException(status_code=503, detail="Optimizer not initialized.")

	metrics = getattr(request.app.state, "optimizer_metrics", None)
	task = getattr(request.app.state, "optimizer_task", None)
	running = task is not None and not task.done()
	snapshot = metrics.snapshot() if metrics is not None else {}
	return OptimizerStatus(enabled=settings.enabled, running=running, **snapshot)
