"""
wallet_mapping/coordinator.py

Provisioning + override protocol for Solana -> EVM mappings.

Rules:
- Canonical (default) address: minted at most once per identity, first writer wins,
  never changed afterwards.
- Chain mappings under provisioning: first writer wins, an existing value is
  authoritative (this also preserves earlier admin overrides).
- Chain mappings under override: last writer wins, exactly one (identity, chain) key.
- No locks. Coordination is the store's single-key conditional put only.
- A candidate address that loses a race is discarded: never stored, never returned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from provisioner.issuer_client import AddressIssuer, AddressIssuerError

from .addresses import describe_address, is_valid_evm_address
from .errors import InvalidAddress, InvalidRequest, IssuerFailure, NotProvisioned, StoreFailure
from .repository import MappingRepository, WriteOutcome

logger = logging.getLogger(__name__)

MAX_CHAIN_ID = 2**64 - 1


# ----------------------------
# Results
# ----------------------------

@dataclass(frozen=True)
class ProvisionResult:
    identity: str
    canonical_address: str
    chain_mappings: Dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OverrideResult:
    identity: str
    chain_id: int
    new_address: str


@dataclass(frozen=True)
class LookupResult:
    identity: str
    default_address: Optional[str]
    chain_mappings: Dict[int, str] = field(default_factory=dict)


# ----------------------------
# Input checks
# ----------------------------

def require_identity(identity: str) -> str:
    if not isinstance(identity, str) or not identity.strip():
        raise InvalidRequest("solana_pubkey cannot be empty")
    return identity


def require_chain_id(chain_id: int, *, identity: Optional[str] = None) -> int:
    if isinstance(chain_id, bool) or not isinstance(chain_id, int):
        raise InvalidRequest(f"chain_id must be an unsigned integer, got {chain_id!r}", identity=identity)
    if chain_id < 0 or chain_id > MAX_CHAIN_ID:
        raise InvalidRequest(f"chain_id out of range: {chain_id}", identity=identity)
    return chain_id


def normalize_chain_ids(chain_ids: Optional[Iterable[int]], *, identity: Optional[str] = None) -> List[int]:
    """Validate and de-duplicate, keeping first-seen order. Empty is rejected."""
    out: List[int] = []
    seen = set()
    for chain_id in chain_ids or ():
        require_chain_id(chain_id, identity=identity)
        if chain_id in seen:
            continue
        seen.add(chain_id)
        out.append(chain_id)
    if not out:
        raise InvalidRequest("chain_ids cannot be empty", identity=identity)
    return out


# ----------------------------
# First-writer-wins helper
# ----------------------------

def _claim(
    candidate: str,
    write_once: Callable[[str], WriteOutcome],
    read_back: Callable[[], Optional[str]],
) -> Tuple[str, bool]:
    """
    Conditional write; on conflict the stored value is authoritative.
    Returns (effective_value, written_by_us). No retries.
    """
    if write_once(candidate) is WriteOutcome.WRITTEN:
        return candidate, True
    stored = read_back()
    if stored is None:
        raise StoreFailure("Conditional write reported an existing key but read-back found nothing")
    return stored, False


def _mint(issuer: AddressIssuer, identity: str, chain_id: Optional[int] = None) -> str:
    try:
        address = issuer.issue(identity, chain_id) if chain_id is not None else issuer.issue(identity)
    except AddressIssuerError as exc:
        logger.error("[ISSUER] Key creation failed for %s (chain=%s): %s", identity, chain_id, exc)
        raise IssuerFailure(str(exc), identity=identity, chain_id=chain_id) from exc

    if not is_valid_evm_address(address):
        logger.error("[ISSUER] Issuer returned malformed address for %s: %s", identity, describe_address(address))
        raise IssuerFailure(
            f"Issuer returned an invalid EVM address: {describe_address(address)}",
            identity=identity,
            chain_id=chain_id,
        )
    return address


# ----------------------------
# Coordinators
# ----------------------------

class ProvisioningCoordinator:
    """Batch entry point: every requested chain ends up resolved, one canonical mint at most."""

    def __init__(self, repository: MappingRepository, issuer: AddressIssuer) -> None:
        self.repository = repository
        self.issuer = issuer

    def provision(self, identity: str, chain_ids: Iterable[int]) -> ProvisionResult:
        require_identity(identity)
        chains = normalize_chain_ids(chain_ids, identity=identity)

        canonical = self.resolve_canonical(identity)

        chain_mappings: Dict[int, str] = {}
        for chain_id in chains:
            chain_mappings[chain_id] = self._resolve_chain(identity, chain_id, canonical)

        logger.info("[PROVISION] %s resolved %d chain(s) to %s", identity, len(chain_mappings), canonical)
        return ProvisionResult(identity=identity, canonical_address=canonical, chain_mappings=chain_mappings)

    def resolve_canonical(self, identity: str) -> str:
        existing = self.repository.read_default_mapping(identity)
        if existing is not None:
            return existing

        candidate = _mint(self.issuer, identity)
        effective, written = _claim(
            candidate,
            lambda addr: self.repository.write_default_mapping_once(identity, addr),
            lambda: self.repository.read_default_mapping(identity),
        )
        if written:
            logger.info("[PROVISION] Minted canonical address %s for %s", effective, identity)
        else:
            # Orphaned credential: minted but never stored. See DESIGN.md (no reconciliation).
            logger.warning(
                "[PROVISION] Lost canonical race for %s; discarding candidate %s, using %s",
                identity,
                candidate,
                effective,
            )
        return effective

    def _resolve_chain(self, identity: str, chain_id: int, canonical: str) -> str:
        existing = self.repository.read_chain_mapping(identity, chain_id)
        if existing is not None:
            return existing

        effective, written = _claim(
            canonical,
            lambda addr: self.repository.write_chain_mapping_once(identity, chain_id, addr),
            lambda: self.repository.read_chain_mapping(identity, chain_id),
        )
        if not written:
            logger.info("[PROVISION] Chain %s for %s already claimed by another writer", chain_id, identity)
        return effective


class OverrideCoordinator:
    """Admin entry point: rotate exactly one chain's address. Not idempotent."""

    def __init__(self, repository: MappingRepository, issuer: AddressIssuer) -> None:
        self.repository = repository
        self.issuer = issuer

    def override(self, identity: str, chain_id: int, new_address: Optional[str] = None) -> OverrideResult:
        require_identity(identity)
        require_chain_id(chain_id, identity=identity)

        if self.repository.read_default_mapping(identity) is None:
            raise NotProvisioned(f"Solana address {identity} not provisioned", identity=identity, chain_id=chain_id)

        if new_address is not None:
            if not is_valid_evm_address(new_address):
                raise InvalidAddress(
                    f"Invalid EVM address format: {describe_address(new_address)}",
                    identity=identity,
                    chain_id=chain_id,
                )
            address = new_address
        else:
            address = _mint(self.issuer, identity, chain_id)

        self.repository.overwrite_chain_mapping(identity, chain_id, address)
        logger.info("[OVERRIDE] %s chain %s now maps to %s", identity, chain_id, address)
        return OverrideResult(identity=identity, chain_id=chain_id, new_address=address)


class MappingLookup:
    """Read-only view. Never mints, never writes."""

    def __init__(self, repository: MappingRepository) -> None:
        self.repository = repository

    def lookup(self, identity: str, chain_ids: Optional[Iterable[int]] = None) -> LookupResult:
        require_identity(identity)
        default_address = self.repository.read_default_mapping(identity)

        chain_mappings: Dict[int, str] = {}
        seen = set()
        for chain_id in chain_ids or ():
            require_chain_id(chain_id, identity=identity)
            if chain_id in seen:
                continue
            seen.add(chain_id)
            addr = self.repository.read_chain_mapping(identity, chain_id)
            if addr is not None:
                chain_mappings[chain_id] = addr

        return LookupResult(identity=identity, default_address=default_address, chain_mappings=chain_mappings)


class WalletMappingService:
    """Bundles the three entry points over one repository + issuer."""

    def __init__(self, repository: MappingRepository, issuer: AddressIssuer) -> None:
        self.repository = repository
        self.issuer = issuer
        self.provisioning = ProvisioningCoordinator(repository, issuer)
        self.overrides = OverrideCoordinator(repository, issuer)
        self.lookups = MappingLookup(repository)

    def provision(self, identity: str, chain_ids: Iterable[int]) -> ProvisionResult:
        return self.provisioning.provision(identity, chain_ids)

    def override(self, identity: str, chain_id: int, new_address: Optional[str] = None) -> OverrideResult:
        return self.overrides.override(identity, chain_id, new_address)

    def lookup(self, identity: str, chain_ids: Optional[Iterable[int]] = None) -> LookupResult:
        return self.lookups.lookup(identity, chain_ids)
