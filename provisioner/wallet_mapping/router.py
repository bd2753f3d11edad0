from __future__ import annotations

"""
wallet_mapping/router.py

Wallet mapping v1: HTTP surface.

- Provision + lookup are open unless PROVISIONER_API_KEY is set.
- Override is admin-only and fail-closed: no PROVISIONER_ADMIN_KEY configured means 403.
- Callers are assumed to be authenticated upstream (Solana signature checks live
  in the backend, not here).
- Domain errors (MappingError) are rendered by the handler registered in main.py.
"""

import secrets
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field, StrictInt

from .coordinator import MAX_CHAIN_ID, WalletMappingService


def _service_from_request(request: Request) -> WalletMappingService:
    # main.py sets app.state.wallet_service at startup.
    svc = getattr(request.app.state, "wallet_service", None)
    if svc is None:
        raise HTTPException(status_code=503, detail="Wallet mapping service not initialised")
    return svc


def _config_value(request: Request, name: str) -> str:
    cfg = getattr(request.app.state, "config", None)
    return str(getattr(cfg, name, "") or "")


# ----------------------------
# Guards
# ----------------------------

def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> None:
    """
    Header-based API key check. If PROVISIONER_API_KEY is not set,
    this is a no-op (open access).
    """
    expected = _config_value(request, "api_key")
    if not expected:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


def require_admin_key(
    request: Request,
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
) -> None:
    expected = _config_value(request, "admin_key")
    if not expected:
        raise HTTPException(
            status_code=403,
            detail={
                "ok": False,
                "error": "ADMIN_DISABLED",
                "message": "Mapping overrides are disabled until PROVISIONER_ADMIN_KEY is configured.",
            },
        )
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing admin key")


# Routers (names used by main.py includes)
wallet_router = APIRouter(prefix="/wallets", tags=["wallets"], dependencies=[Depends(require_api_key)])
admin_wallet_router = APIRouter(prefix="/admin/wallets", tags=["wallets-admin"], dependencies=[Depends(require_admin_key)])


# ----------------------------
# Models
# ----------------------------

class ProvisionRequest(BaseModel):
    solana_pubkey: str = Field(..., min_length=1, description="Base58 Solana public key (already authenticated)")
    chain_ids: List[StrictInt] = Field(..., description="Destination EVM chain ids, e.g. [1, 137, 42161]")


class ProvisionResponse(BaseModel):
    ok: bool = True
    solana_pubkey: str
    evm_address: str
    chain_mappings: Dict[int, str]


class LookupResponse(BaseModel):
    ok: bool = True
    solana_pubkey: str
    default_address: Optional[str] = None
    chain_mappings: Dict[int, str]


class OverrideRequest(BaseModel):
    solana_pubkey: str = Field(..., min_length=1)
    chain_id: StrictInt = Field(..., ge=0, le=MAX_CHAIN_ID, description="Chain whose mapping is rotated")
    new_evm_address: Optional[str] = Field(
        default=None,
        description="Optional. If omitted, a fresh chain-scoped key is minted.",
    )


class OverrideResponse(BaseModel):
    ok: bool = True
    solana_pubkey: str
    chain_id: int
    new_evm_address: str


# ----------------------------
# Endpoints
# ----------------------------

@wallet_router.post("/provision", response_model=ProvisionResponse, summary="Provision (or fetch) EVM wallets for a Solana key.")
def provision_wallets(request: Request, body: ProvisionRequest) -> ProvisionResponse:
    svc = _service_from_request(request)
    result = svc.provision(body.solana_pubkey, body.chain_ids)
    return ProvisionResponse(
        solana_pubkey=result.identity,
        evm_address=result.canonical_address,
        chain_mappings=result.chain_mappings,
    )


@wallet_router.get("/{solana_pubkey}", response_model=LookupResponse, summary="Read existing mappings (no provisioning).")
def lookup_wallets(
    request: Request,
    solana_pubkey: str,
    chain_id: Optional[List[int]] = Query(default=None, description="Repeat for several chains."),
) -> LookupResponse:
    svc = _service_from_request(request)
    result = svc.lookup(solana_pubkey, chain_id or [])
    return LookupResponse(
        solana_pubkey=result.identity,
        default_address=result.default_address,
        chain_mappings=result.chain_mappings,
    )


@admin_wallet_router.post("/override", response_model=OverrideResponse, summary="Rotate the EVM address for one chain (admin).")
def override_wallet(request: Request, body: OverrideRequest) -> OverrideResponse:
    svc = _service_from_request(request)
    result = svc.override(body.solana_pubkey, body.chain_id, body.new_evm_address)
    return OverrideResponse(
        solana_pubkey=result.identity,
        chain_id=result.chain_id,
        new_evm_address=result.new_address,
    )
