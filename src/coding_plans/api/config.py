"""Generic-gateway vendor management."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from coding_plans.config.store import ConfigStore, VendorConfig
from coding_plans.core.deps import get_config_store
from coding_plans.core.errors import not_found

router = APIRouter(prefix="/config")


class VendorApiKeyRequest(BaseModel):
    api_key: str


@router.get("/vendors", response_model=list[VendorConfig])
def get_vendors(config: ConfigStore = Depends(get_config_store)) -> list[VendorConfig]:
    return config.get_vendors()


@router.put("/vendors", response_model=list[VendorConfig])
async def set_vendors(body: list[Any], config: ConfigStore = Depends(get_config_store)) -> list[VendorConfig]:
    # Must run on the event loop: the change event schedules the gateway refresh there.
    # Malformed entries are dropped, not rejected.
    return config.set_vendors(body)


@router.put("/vendors/{name}/api-key", status_code=204)
async def set_vendor_api_key(
    name: str,
    body: VendorApiKeyRequest,
    config: ConfigStore = Depends(get_config_store),
) -> Response:
    if config.get_vendor(name) is None:
        raise not_found(f"Unknown vendor: {name}")
    await config.set_api_key(name, body.api_key)
    return Response(status_code=204)
