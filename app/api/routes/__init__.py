from __future__ import annotations

from app.api.routes.crypto import router as crypto_router
from app.api.routes.health import router as health_router
from app.api.routes.metrics import router as metrics_router

__all__ = ["crypto_router", "health_router", "metrics_router"]
