from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Health check endpoint.

    Not rate limited or cached. Reports whether the background maintenance
    jobs (cache sweep, limiter sweep, metrics flush) are running.

    Returns:
        dict: ``status`` is always "ok" while the process serves requests.
    """

    services = getattr(request.app.state, "services", None)
    scheduler_running = bool(services and services.scheduler.running)
    return {"status": "ok", "background_jobs": "running" if scheduler_running else "stopped"}
