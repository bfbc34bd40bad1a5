"""Read-only FastAPI application exposing the reconciled registry."""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .. import __version__
from ..config import Settings
from ..descriptor import ServiceDescriptor
from ..events import get_status_from_events
from ..registry import EMPTY, Registry
from ..render import systemd
from ..state import read_registry_snapshot


# Pydantic models
class ApplicationSummary(BaseModel):
    name: str
    unit_name: str
    user: str
    binding: str
    isolated: bool
    exposed: bool


class ApplicationsResponse(BaseModel):
    applications: List[ApplicationSummary]
    pending_removal: List[str]


class DescriptorResponse(BaseModel):
    name: str
    unit_name: str
    user: str
    working_directory: str
    secrets_path: str
    exec_start: List[str]
    environment: Dict[str, str]
    network: Dict[str, Any]
    sandbox: Dict[str, Any]
    limits: Dict[str, int]
    net_bind_capability: bool
    description: Optional[str] = None


app = FastAPI(
    title="wsgiward API",
    description="Read-only view of reconciled WSGI applications",
    version=__version__,
)


def _snapshot() -> Dict[str, Any]:
    return read_registry_snapshot(Settings.from_env().home_path) or {}


def _registry() -> Registry:
    snapshot = _snapshot()
    return Registry.from_snapshot(snapshot) if snapshot else EMPTY


def _descriptor(name: str) -> ServiceDescriptor:
    descriptor = _registry().get(name)
    if descriptor is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": f"Application {name} not found"})
    return descriptor


def _summary(descriptor: ServiceDescriptor) -> ApplicationSummary:
    return ApplicationSummary(
        name=descriptor.name,
        unit_name=descriptor.unit_name,
        user=descriptor.user,
        binding=descriptor.spec.binding.key(),
        isolated=descriptor.spec.isolate_network,
        exposed=descriptor.spec.expose_via_proxy,
    )


@app.get("/")
async def root():
    """Health check endpoint."""
    status = get_status_from_events(Settings.from_env().home_path)
    return {"message": "wsgiward API is running", "version": __version__, "status": status}


@app.get("/applications", response_model=ApplicationsResponse)
async def list_applications():
    """List applications of the current registry."""
    snapshot = _snapshot()
    registry = Registry.from_snapshot(snapshot) if snapshot else EMPTY
    pending = sorted(item["name"] for item in snapshot.get("removed", []))
    return ApplicationsResponse(
        applications=[_summary(d) for d in registry.descriptors()],
        pending_removal=pending,
    )


@app.get("/applications/{name}", response_model=DescriptorResponse)
async def get_application(name: str):
    """Get the service descriptor of one application."""
    descriptor = _descriptor(name)
    data = descriptor.to_dict()
    return DescriptorResponse(
        name=descriptor.name,
        unit_name=descriptor.unit_name,
        user=descriptor.user,
        working_directory=descriptor.working_directory,
        secrets_path=descriptor.secrets_path,
        exec_start=list(descriptor.exec_start),
        environment=descriptor.environment,
        network=data["network"],
        sandbox=data["sandbox"],
        limits=data["limits"],
        net_bind_capability=descriptor.net_bind_capability,
        description=descriptor.description,
    )


@app.get("/applications/{name}/unit", response_class=PlainTextResponse)
async def get_unit(name: str):
    """Rendered systemd unit of one application."""
    return systemd.render_unit(_descriptor(name))
