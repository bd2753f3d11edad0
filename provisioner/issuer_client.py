from __future__ import annotations

import json
import logging
import secrets
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from provisioner.wallet_mapping.addresses import describe_address, is_valid_evm_address

logger = logging.getLogger(__name__)


class AddressIssuerError(Exception):
    """Generic error from an address-issuing backend."""
    pass


def canonical_material_id(identity: str) -> str:
    # One canonical key per Solana address, shared by every chain by default.
    return f"EVM_{identity}"


def chain_material_id(identity: str, chain_id: int) -> str:
    # Random suffix: every override mints fresh material, never the canonical key.
    return f"EVM_{identity}_{int(chain_id)}_{secrets.token_hex(8)}"


def _checked_address(address: Any, source: str) -> str:
    if not is_valid_evm_address(address):
        raise AddressIssuerError(f"{source} returned an invalid EVM address: {describe_address(address)}")
    return str(address)


class AddressIssuer(ABC):
    """
    Abstract base for anything that mints EVM credentials.
    The coordinators talk to THIS, never to CubeSigner directly.
    """

    @abstractmethod
    def issue(self, identity: str, chain_id: Optional[int] = None) -> str:
        """
        Mint a brand new EVM key and return its address.

        - chain_id=None: canonical issuance for the identity
        - chain_id set: chain-scoped re-issuance (admin override)

        Each call creates a new credential. Raises AddressIssuerError.
        """
        raise NotImplementedError


class CubeSignerCliIssuer(AddressIssuer):
    """
    Creates Secp256k1 keys through the CubeSigner CLI (`cs key create`).

    Expects JSON on stdout like {"key_id": "Key#...", "address": "0x...", ...}.
    No shell; fixed argv.
    """

    def __init__(self, cli_path: str = "cs", timeout: int = 30) -> None:
        self.cli_path = cli_path
        self.timeout = timeout

    def _argv(self, material_id: str) -> List[str]:
        return [
            self.cli_path,
            "key",
            "create",
            "--type",
            "Secp256k1",
            "--material-id",
            material_id,
        ]

    def issue(self, identity: str, chain_id: Optional[int] = None) -> str:
        material_id = canonical_material_id(identity) if chain_id is None else chain_material_id(identity, chain_id)

        try:
            proc = subprocess.run(
                self._argv(material_id),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise AddressIssuerError(f"CubeSigner CLI timed out after {self.timeout} seconds") from exc
        except OSError as exc:
            raise AddressIssuerError(f"Failed to execute CubeSigner CLI: {exc}") from exc

        if proc.returncode != 0:
            raise AddressIssuerError(f"CubeSigner key creation failed: {(proc.stderr or '').strip()[:500]}")

        try:
            parsed = json.loads(proc.stdout or "")
        except ValueError as exc:
            raise AddressIssuerError(f"Failed to parse CubeSigner output: {exc}") from exc

        if not isinstance(parsed, dict) or "address" not in parsed:
            raise AddressIssuerError("No address field in CubeSigner response")

        address = _checked_address(parsed["address"], "CubeSigner CLI")
        logger.info("[ISSUER] Created key %s via CLI for material %s", parsed.get("key_id"), material_id)
        return address


class CubeSignerApiIssuer(AddressIssuer):
    """
    Creates keys through the CubeSigner management API:

      POST {base_url}/v0/org/{org_id}/keys
      {"count": 1, "key_type": "SecpEthAddr", "metadata": {...}}

    For SecpEthAddr keys the returned `material_id` IS the EVM address.
    """

    def __init__(
        self,
        base_url: str,
        org_id: str,
        session_token: Optional[str],
        timeout: int = 30,
    ) -> None:
        self.base_url = base_url
        self.org_id = org_id
        self.session_token = session_token
        self.timeout = timeout

    def issue(self, identity: str, chain_id: Optional[int] = None) -> str:
        if not self.session_token or not self.org_id:
            raise AddressIssuerError("CubeSigner API credentials not configured.")

        material_id = canonical_material_id(identity) if chain_id is None else chain_material_id(identity, chain_id)
        url = f"{self.base_url.rstrip('/')}/v0/org/{self.org_id}/keys"

        payload: Dict[str, Any] = {
            "count": 1,
            "key_type": "SecpEthAddr",
            "metadata": {"solana_pubkey": identity, "material_id": material_id, "chain_id": chain_id},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": self.session_token,
        }

        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise AddressIssuerError(f"Error contacting CubeSigner: {e}") from e

        if resp.status_code != 200:
            raise AddressIssuerError(f"CubeSigner returned {resp.status_code}: {resp.text[:500]}")

        try:
            data: Dict[str, Any] = resp.json()
        except ValueError as e:
            raise AddressIssuerError(f"Invalid JSON from CubeSigner: {e}") from e

        keys = data.get("keys") if isinstance(data, dict) else None
        if not keys or not isinstance(keys, list) or not isinstance(keys[0], dict):
            raise AddressIssuerError("No keys in CubeSigner response")

        address = _checked_address(keys[0].get("material_id"), "CubeSigner API")
        logger.info("[ISSUER] Created key %s via API for material %s", keys[0].get("key_id"), material_id)
        return address


class LocalAddressIssuer(AddressIssuer):
    """
    Dev-only issuer: random addresses, no key material behind them.
    Never point a real deployment at this.
    """

    def issue(self, identity: str, chain_id: Optional[int] = None) -> str:
        return "0x" + secrets.token_hex(20)


def build_issuer(config: Any) -> AddressIssuer:
    """Pick the issuer named by config.issuer."""
    if config.issuer == "cubesigner-cli":
        return CubeSignerCliIssuer(cli_path=config.cubesigner_cli, timeout=config.cubesigner_timeout)
    if config.issuer == "cubesigner-api":
        return CubeSignerApiIssuer(
            base_url=config.cubesigner_api_base,
            org_id=config.cubesigner_org_id,
            session_token=config.cubesigner_session_token,
            timeout=config.cubesigner_timeout,
        )
    if config.issuer == "local":
        logger.warning("[ISSUER] Using local random issuer; addresses have no signing keys behind them")
        return LocalAddressIssuer()
    raise AddressIssuerError(f"Unknown issuer: {config.issuer}")
