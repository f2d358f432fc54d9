from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from cc_switch.services.app_types import parse_app_type
from cc_switch.services.provider_service import ProviderService
from cc_switch.services.provider_store import Provider

router = APIRouter()


class ProviderRequest(BaseModel):
    app: str
    provider: Provider


def get_provider_service(request: Request) -> ProviderService:
    return request.app.state.provider_service


def _ok(data: Any) -> dict:
    return {"success": True, "data": data}


# Endpoints are plain functions so FastAPI runs them on its worker thread
# pool; the service blocks on per-app locks and file I/O.
#
# Each route is served under the /providers/app/... and /providers/item/...
# paths the desktop client calls, and under the short form.

@router.get("/providers/app/{app}")
@router.get("/providers/{app}")
def list_providers(app: str, service: ProviderService = Depends(get_provider_service)):
    providers, current = service.snapshot(parse_app_type(app))
    return _ok({
        "providers": {pid: p.to_json() for pid, p in providers.items()},
        "current": current,
    })


@router.get("/providers/app/{app}/current")
@router.get("/providers/{app}/current")
def get_current_provider(app: str, service: ProviderService = Depends(get_provider_service)):
    return _ok(service.current(parse_app_type(app)))


@router.post("/providers")
def add_provider(req: ProviderRequest, service: ProviderService = Depends(get_provider_service)):
    app_type = parse_app_type(req.app)
    return _ok(service.add(app_type, req.provider).to_json())


@router.put("/providers/item/{provider_id}")
@router.put("/providers/{provider_id}")
def update_provider(
    provider_id: str,
    req: ProviderRequest,
    service: ProviderService = Depends(get_provider_service),
):
    app_type = parse_app_type(req.app)
    # The path id wins over whatever the body carries.
    provider = req.provider.model_copy(update={"id": provider_id})
    return _ok(service.update(app_type, provider).to_json())


@router.delete("/providers/app/{app}/{provider_id}")
@router.delete("/providers/{app}/{provider_id}")
def delete_provider(app: str, provider_id: str, service: ProviderService = Depends(get_provider_service)):
    service.delete(parse_app_type(app), provider_id)
    return _ok(True)


@router.post("/providers/app/{app}/{provider_id}/switch")
@router.post("/providers/{app}/{provider_id}/switch")
def switch_provider(app: str, provider_id: str, service: ProviderService = Depends(get_provider_service)):
    service.switch(parse_app_type(app), provider_id)
    return _ok(True)
