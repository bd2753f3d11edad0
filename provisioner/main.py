from __future__ import annotations

import logging
import os
import socket
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from provisioner import __version__
from provisioner.config import ProvisionerConfig, load_config
from provisioner.issuer_client import AddressIssuer, build_issuer
from provisioner.wallet_mapping.coordinator import WalletMappingService
from provisioner.wallet_mapping.errors import MappingError, MappingErrorCode
from provisioner.wallet_mapping.repository import MappingRepository
from provisioner.wallet_mapping.router import admin_wallet_router, wallet_router
from provisioner.wallet_mapping.store import MappingStore, MappingStoreError, build_store

logger = logging.getLogger(__name__)


# ----------------------------
# Logging
# ----------------------------

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("provisioner").setLevel(level)


# ----------------------------
# Error mapping
# ----------------------------

ERROR_STATUS: Dict[MappingErrorCode, int] = {
    MappingErrorCode.INVALID_REQUEST: 400,
    MappingErrorCode.INVALID_ADDRESS: 422,
    MappingErrorCode.NOT_PROVISIONED: 404,
    MappingErrorCode.STORE_FAILURE: 503,
    MappingErrorCode.ISSUER_FAILURE: 502,
}


async def mapping_error_handler(request: Request, exc: MappingError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.code, 500)
    if status >= 500:
        logger.error("[HTTP] %s %s failed: %s (%s)", request.method, request.url.path, exc.code.value, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


# ----------------------------
# Health
# ----------------------------

health_router = APIRouter(prefix="/health", tags=["health"])

_PROBE_KEY = "health:probe"


@health_router.get("/ping")
async def ping() -> Dict[str, Any]:
    return {"status": "ok", "message": "wallet provisioner is alive"}


@health_router.get("/system")
async def system_health(request: Request) -> Dict[str, Any]:
    proc = psutil.Process(os.getpid())
    mem = proc.memory_info()
    started = getattr(request.app.state, "started_at", time.time())

    return {
        "status": "ok",
        "hostname": socket.gethostname(),
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.time() - started, 3),
        "process": {
            "pid": proc.pid,
            "rss": mem.rss,
            "threads": proc.num_threads(),
            "cpu_percent": proc.cpu_percent(interval=None),
        },
        "host_memory_percent": psutil.virtual_memory().percent,
    }


@health_router.get("/store")
def store_health(request: Request) -> Dict[str, Any]:
    store: MappingStore = request.app.state.store
    start = time.time()
    try:
        store.get(_PROBE_KEY)
    except MappingStoreError as exc:
        return {
            "status": "error",
            "backend": store.backend,
            "message": str(exc),
            "duration_seconds": time.time() - start,
        }
    return {
        "status": "ok",
        "backend": store.backend,
        "duration_seconds": time.time() - start,
    }


@health_router.get("/config", include_in_schema=False)
def config_summary(request: Request) -> Dict[str, Any]:
    return request.app.state.config.describe()


# ----------------------------
# App
# ----------------------------

def create_app(
    config: Optional[ProvisionerConfig] = None,
    *,
    store: Optional[MappingStore] = None,
    issuer: Optional[AddressIssuer] = None,
) -> FastAPI:
    """
    Wire config -> store -> repository -> coordinators -> routers.
    `store` / `issuer` may be injected (tests, embedding).
    """
    cfg = config or load_config()
    configure_logging(cfg.log_level)

    kv = store if store is not None else build_store(cfg)
    minting = issuer if issuer is not None else build_issuer(cfg)
    service = WalletMappingService(MappingRepository(kv), minting)

    app = FastAPI(title="skate-wallet-provisioner", version=__version__)
    app.state.config = cfg
    app.state.store = kv
    app.state.wallet_service = service
    app.state.started_at = time.time()

    app.add_exception_handler(MappingError, mapping_error_handler)

    app.include_router(health_router)
    app.include_router(wallet_router)
    app.include_router(admin_wallet_router)

    logger.info("[STARTUP] Wallet provisioner %s ready: %s", __version__, cfg.describe())
    return app


app = create_app()
