"""
Health and readiness endpoints for the storefront.

/health and /health/live are cheap liveness probes; /health/ready touches the
database, the host and the reservation backlog; /health/startup checks
migrations and the settings the payment and email paths need.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, inspect, select, text
from sqlalchemy.engine import Engine
from typing import Dict, Any
from datetime import datetime, timedelta, timezone
from enum import Enum
import time
import psutil
import logging

from darktides.domain.models import Order, OrderStatus, Product, Reservation, utcnow

logger = logging.getLogger(__name__)

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

class ServiceHealth:
    def __init__(self, service_name: str, engine: Engine, settings, version: str = "1.0.0"):
        self.service_name = service_name
        self.engine = engine
        self.settings = settings
        self.version = version
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.readiness_checks()
            overall_status = self.overall_status(checks)
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE if overall_status == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(status_code=status_code, content={
                "status": overall_status,
                "version": self.version,
                "serviceId": self.service_name,
                "checks": checks,
                "timestamp": _now()
            })

        @router.get("/health/startup")
        def startup() -> JSONResponse:
            checks = {
                "database:migrations": self._check_migrations(),
                "config:payments": self._check_configuration(),
            }
            if self.overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return JSONResponse(content={"status": "started", "checks": checks})

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "storefront": self.storefront_counters(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "memory_vms_bytes": memory.vms,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }

        return router

    def readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        return {
            "database:connectivity": self._check_database(),
            "storage:disk_space": self._check_disk_space(),
            "system:memory": self._check_memory(),
            "inventory:reservation_backlog": self._check_reservation_backlog(),
        }

    def storefront_counters(self) -> Dict[str, Any]:
        now = utcnow()
        try:
            with self.engine.connect() as conn:
                active = conn.execute(
                    select(func.count()).select_from(Reservation).where(Reservation.expires_at > now)
                ).scalar_one()
                held = conn.execute(select(func.coalesce(func.sum(Product.reserved_quantity), 0))).scalar_one()
                pending = conn.execute(
                    select(func.count()).select_from(Order).where(Order.status == OrderStatus.PENDING.value)
                ).scalar_one()
        except Exception as e:
            logger.error(f"Storefront counters unavailable: {e}")
            return {}
        return {"active_reservations": active, "units_held": int(held), "pending_orders": pending}

    def _check_reservation_backlog(self) -> Dict[str, Any]:
        # holds this far past expiry mean the cleanup job is not running
        cutoff = utcnow() - timedelta(seconds=2 * self.settings.RESERVATION_CLEANUP_INTERVAL_SECONDS)
        try:
            with self.engine.connect() as conn:
                stale = conn.execute(
                    select(func.count()).select_from(Reservation).where(Reservation.expires_at <= cutoff)
                ).scalar_one()
        except Exception as e:
            logger.error(f"Reservation backlog check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "time": _now()}
        return {
            "status": HealthStatus.WARN if stale else HealthStatus.PASS,
            "componentType": "datastore",
            "observedValue": stale,
            "observedUnit": "expired reservations",
            "time": _now()
        }

    def _check_database(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": HealthStatus.PASS,
                "componentType": "datastore",
                "observedValue": f"{(time.time() - start_time) * 1000:.2f}",
                "observedUnit": "ms",
                "time": _now()
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "time": _now()}

    def _check_disk_space(self) -> Dict[str, Any]:
        try:
            free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        except OSError as e:
            return {"status": HealthStatus.WARN, "componentType": "system", "output": str(e), "time": _now()}
        if free_gb < 1:
            status_val = HealthStatus.FAIL
        elif free_gb < 5:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{free_gb:.2f}",
            "observedUnit": "GB",
            "time": _now()
        }

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        if available_mb < 100:
            status_val = HealthStatus.FAIL
        elif available_mb < 500:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{available_mb:.2f}",
            "observedUnit": "MB",
            "time": _now()
        }

    def _check_migrations(self) -> Dict[str, Any]:
        try:
            tables = set(inspect(self.engine).get_table_names())
        except Exception as e:
            logger.error(f"Migration check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "time": _now()}
        if "alembic_version" in tables:
            return {"status": HealthStatus.PASS, "componentType": "datastore", "time": _now()}
        return {
            "status": HealthStatus.WARN,
            "componentType": "datastore",
            "output": "Migrations table not found",
            "time": _now()
        }

    def _check_configuration(self) -> Dict[str, Any]:
        required = ["COINBASE_COMMERCE_API_KEY", "COINBASE_WEBHOOK_SECRET", "RESEND_API_KEY", "NOTIFICATION_EMAIL"]
        missing = [name for name in required if not getattr(self.settings, name, None)]
        if missing:
            # Venmo checkout still works without these
            return {
                "status": HealthStatus.WARN,
                "componentType": "configuration",
                "output": f"Missing settings: {', '.join(missing)}",
                "time": _now()
            }
        return {"status": HealthStatus.PASS, "componentType": "configuration", "time": _now()}

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
