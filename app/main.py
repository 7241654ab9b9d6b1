from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request

from app.api.routers import assignments, audit, identity, mileage_rates, trips, vouchers
from app.infra.db import check_db_ready
from app.infra.logging_utils import setup_json_logging
from app.services.notification_service import NotificationService

setup_json_logging()
logger = logging.getLogger("app.request")

app = FastAPI(
    title="travel-vouchers",
    description="Travel voucher approval workflow for field inspectors.",
    version="0.1.0",
)

notifications = NotificationService()
notifications.register()


@app.middleware("http")
async def request_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        claims = getattr(request.state, "claims", {})
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "actor_id": claims.get("sub"),
            },
        )


app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(trips.router, prefix="/api/trips", tags=["trips"])
app.include_router(vouchers.router, prefix="/api/vouchers", tags=["vouchers"])
app.include_router(assignments.router, prefix="/api/assignments", tags=["assignments"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])
app.include_router(mileage_rates.router, prefix="/api/mileage-rates", tags=["mileage-rates"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
