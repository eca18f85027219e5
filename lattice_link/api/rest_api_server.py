# File: lattice_link/api/rest_api_server.py
"""
lattice-link REST API Server

Read-only FastAPI surface over the reconciler:
- Health and Prometheus metrics
- Ledger inspection
- Dry-run plans and drift status for a posted desired state

Nothing here writes to a provider; apply and destroy stay on the CLI.
"""

import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from .. import __version__
from ..config import Settings
from ..desired_state import parse_desired_state
from ..errors import LatticeLinkError, ValidationError
from ..ledger import Ledger
from ..metrics import METRICS
from ..providers import build_driver, needs_cluster_driver
from ..providers.base import ResourceDriver
from ..reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)

app = FastAPI(
    title="lattice-link API",
    description="Plan and status surface for cross-VPC VPC Lattice connectivity graphs",
    version=__version__,
)

_settings: Optional[Settings] = None
_ledger: Optional[Ledger] = None

DriverFactory = Callable[[Optional[str], bool], ResourceDriver]


class PlanRequest(BaseModel):
    desired_state: Dict[str, Any]
    prune: bool = False


class StatusRequest(BaseModel):
    desired_state: Dict[str, Any]


class LedgerEntryOut(BaseModel):
    graph: str
    resource_type: str
    key: str
    resource_id: str
    scope: Dict[str, str] = Field(default_factory=dict)
    status: str
    updated_at: Optional[str] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_ledger(settings: Settings = Depends(get_settings)) -> Ledger:
    global _ledger
    if _ledger is None:
        _ledger = Ledger(settings.database_url)
    return _ledger


def get_driver_factory(settings: Settings = Depends(get_settings)) -> DriverFactory:
    return lambda region, cluster: build_driver(replace(settings, enable_cluster=cluster), region)


def _engine(desired, settings: Settings, ledger: Ledger, driver_factory: DriverFactory) -> ReconciliationEngine:
    cluster = settings.enable_cluster and needs_cluster_driver(desired, ledger)
    return ReconciliationEngine(driver_factory(desired.region, cluster), settings, ledger=ledger)


def _parse(document: Dict[str, Any]):
    try:
        return parse_desired_state(document)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.messages)


@app.get("/health")
def health():
    return {"status": "healthy", "version": __version__}


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.middleware("http")
async def prometheus_middleware(request: Request, call_next):
    METRICS["api_requests"].labels(method=request.method, endpoint=request.url.path).inc()
    start = time.time()
    response = await call_next(request)
    logger.debug(f"{request.method} {request.url.path} took {(time.time() - start) * 1000:.1f}ms")
    return response


@app.get("/ledger", response_model=List[LedgerEntryOut])
def list_ledger(graph: Optional[str] = None, ledger: Ledger = Depends(get_ledger)):
    return [record.to_dict() for record in ledger.entries(graph)]


@app.post("/plan")
def plan(request: PlanRequest, settings: Settings = Depends(get_settings),
         ledger: Ledger = Depends(get_ledger), driver_factory: DriverFactory = Depends(get_driver_factory)):
    desired = _parse(request.desired_state)
    try:
        result = _engine(desired, settings, ledger, driver_factory).apply(desired, prune=request.prune, dry_run=True)
    except LatticeLinkError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return result.to_dict()


@app.post("/status")
def status(request: StatusRequest, settings: Settings = Depends(get_settings),
           ledger: Ledger = Depends(get_ledger), driver_factory: DriverFactory = Depends(get_driver_factory)):
    desired = _parse(request.desired_state)
    try:
        result = _engine(desired, settings, ledger, driver_factory).status(desired)
    except LatticeLinkError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return result.to_dict()
