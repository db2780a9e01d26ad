from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Protocol

from src.config import settings
from src.db import supabase
from src.domain.routing import RoutingResult, route_lead
from src.observability import incr_metric, log_event, sanitize_error


class Dispatcher(Protocol):
    def dispatch(self, workspace_id: str, lead_id: str, *, request_id: str | None = None) -> RoutingResult | None:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InlineDispatcher:
    """Routes within the current request and hands back the result."""

    def dispatch(self, workspace_id: str, lead_id: str, *, request_id: str | None = None) -> RoutingResult | None:
        return route_lead(workspace_id, lead_id, request_id=request_id)


class QueuedDispatcher:
    """Enqueues a routing job; a scheduler drains the queue later."""

    def dispatch(self, workspace_id: str, lead_id: str, *, request_id: str | None = None) -> RoutingResult | None:
        supabase.table("routing_jobs").insert({
            "workspace_id": workspace_id,
            "lead_id": lead_id,
            "status": "pending",
            "attempts": 0,
            "request_id": request_id,
            "created_at": _now_iso(),
        }).execute()
        incr_metric("routing.enqueued")
        return None


def get_dispatcher() -> Dispatcher:
    if settings.routing_dispatch_mode == "queued":
        return QueuedDispatcher()
    return InlineDispatcher()


def dispatch_routing(workspace_id: str, lead_id: str, *, request_id: str | None = None) -> RoutingResult | None:
    """Dispatch without letting a routing failure escape to the ingestion path."""
    try:
        return get_dispatcher().dispatch(workspace_id, lead_id, request_id=request_id)
    except Exception as exc:
        incr_metric("routing.dispatch_failed")
        log_event(
            "routing_dispatch_failed",
            level=logging.ERROR,
            request_id=request_id,
            workspace_id=workspace_id,
            lead_id=lead_id,
            error=sanitize_error(exc),
        )
        return None


def _claim_job(job: dict[str, Any]) -> bool:
    claimed = supabase.table("routing_jobs").update({
        "status": "processing",
        "attempts": int(job.get("attempts") or 0) + 1,
        "started_at": _now_iso(),
    }).eq("id", job["id"]).eq("status", "pending").execute()
    return bool(claimed.data)


def _run_job(job: dict[str, Any]) -> dict[str, Any]:
    try:
        result = route_lead(job["workspace_id"], job["lead_id"], request_id=job.get("request_id"))
    except Exception as exc:
        supabase.table("routing_jobs").update({
            "status": "failed",
            "error": sanitize_error(exc),
            "finished_at": _now_iso(),
        }).eq("id", job["id"]).execute()
        return {"job_id": job["id"], "status": "failed", "error": sanitize_error(exc)}
    supabase.table("routing_jobs").update({
        "status": "completed",
        "error": None,
        "finished_at": _now_iso(),
    }).eq("id", job["id"]).execute()
    return {"job_id": job["id"], "status": "completed", "matched": result.matched}


def drain_routing_jobs(limit: int | None = None, *, request_id: str | None = None) -> dict[str, Any]:
    limit = limit or settings.routing_queue_drain_limit
    pending = supabase.table("routing_jobs").select("id, workspace_id, lead_id, attempts, request_id").eq(
        "status", "pending"
    ).order("created_at").limit(limit).execute()
    jobs = [job for job in pending.data or [] if _claim_job(job)]

    results: list[dict[str, Any]] = []
    max_workers = max(1, min(settings.import_routing_concurrency, len(jobs) or 1))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        in_flight: set[Future] = set()
        for job in jobs:
            in_flight.add(executor.submit(_run_job, job))
            if len(in_flight) >= max_workers:
                done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                results.extend(f.result() for f in done)
        if in_flight:
            done, _ = wait(in_flight)
            results.extend(f.result() for f in done)

    completed = sum(1 for r in results if r["status"] == "completed")
    failed = len(results) - completed
    incr_metric("routing.drained", value=completed, status="completed")
    if failed:
        incr_metric("routing.drained", value=failed, status="failed")
    log_event("routing_queue_drained", request_id=request_id, claimed=len(jobs), completed=completed, failed=failed)
    return {"claimed": len(jobs), "completed": completed, "failed": failed, "results": results}
