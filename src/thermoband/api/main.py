import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import ThermobandConfig, load_config
from ..errors import ThermobandError
from ..registry.device_registry import DeviceRegistry
from ..registry.lifecycle import DeviceLifecycleManager
from ..telemetry.samples import SampleLog
from ..utils.audit import NDJSONAuditLogger
from . import devices, patients, temperatures

logger = logging.getLogger(__name__)


async def _thermoband_error(request: Request, exc: ThermobandError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc), "code": "invalid"})


def create_app(cfg: ThermobandConfig | None = None) -> FastAPI:
    cfg = cfg or load_config()
    app = FastAPI(title="Thermoband API")

    # Dashboard is served from another origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    registry = DeviceRegistry(cfg.registry_path)
    audit = NDJSONAuditLogger(cfg.audit_path) if cfg.audit_path else None
    app.state.config = cfg
    app.state.registry = registry
    app.state.lifecycle = DeviceLifecycleManager(registry, audit=audit)
    app.state.sample_log = SampleLog()

    app.add_exception_handler(ThermobandError, _thermoband_error)
    app.add_exception_handler(ValueError, _value_error)

    app.include_router(patients.router)
    app.include_router(devices.router)
    app.include_router(temperatures.router)

    logger.info(
        "Thermoband API ready (registry=%s, audit=%s)",
        cfg.registry_path or "memory",
        cfg.audit_path or "off",
    )
    return app


app = create_app()
