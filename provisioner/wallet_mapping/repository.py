from __future__ import annotations

from enum import Enum
from typing import Optional

from .addresses import describe_address, is_valid_evm_address
from .errors import InvalidAddress, StoreFailure
from .store import MappingStore, MappingStoreError


# Persisted key layout. Must stay bit-exact for compatibility with existing buckets.
DEFAULT_KEY_PREFIX = "default:"


def chain_key(identity: str, chain_id: int) -> str:
    return f"{identity}:{chain_id}"


def default_key(identity: str) -> str:
    return f"{DEFAULT_KEY_PREFIX}{identity}"


class WriteOutcome(str, Enum):
    WRITTEN = "written"
    ALREADY_PRESENT = "already_present"


class MappingRepository:
    """
    Identity-centric reads/writes over a MappingStore.

    Exactly one store operation per call and no retries here; retry policy
    belongs to the coordinators. Store errors surface as StoreFailure.
    """

    def __init__(self, store: MappingStore) -> None:
        self.store = store

    # ----------------------------
    # Reads
    # ----------------------------

    def read_chain_mapping(self, identity: str, chain_id: int) -> Optional[str]:
        return self._get(chain_key(identity, chain_id), identity=identity, chain_id=chain_id)

    def read_default_mapping(self, identity: str) -> Optional[str]:
        return self._get(default_key(identity), identity=identity)

    # ----------------------------
    # Writes
    # ----------------------------

    def write_chain_mapping_once(self, identity: str, chain_id: int, address: str) -> WriteOutcome:
        _require_address(address, identity=identity, chain_id=chain_id)
        return self._put_if_absent(chain_key(identity, chain_id), address, identity=identity, chain_id=chain_id)

    def write_default_mapping_once(self, identity: str, address: str) -> WriteOutcome:
        _require_address(address, identity=identity)
        return self._put_if_absent(default_key(identity), address, identity=identity)

    def overwrite_chain_mapping(self, identity: str, chain_id: int, address: str) -> WriteOutcome:
        _require_address(address, identity=identity, chain_id=chain_id)
        key = chain_key(identity, chain_id)
        try:
            self.store.put(key, address)
        except MappingStoreError as exc:
            raise StoreFailure(str(exc), identity=identity, chain_id=chain_id) from exc
        return WriteOutcome.WRITTEN

    # ----------------------------
    # Store plumbing
    # ----------------------------

    def _get(self, key: str, *, identity: str, chain_id: Optional[int] = None) -> Optional[str]:
        try:
            return self.store.get(key)
        except MappingStoreError as exc:
            raise StoreFailure(str(exc), identity=identity, chain_id=chain_id) from exc

    def _put_if_absent(self, key: str, address: str, *, identity: str, chain_id: Optional[int] = None) -> WriteOutcome:
        try:
            stored = self.store.put_if_absent(key, address)
        except MappingStoreError as exc:
            raise StoreFailure(str(exc), identity=identity, chain_id=chain_id) from exc
        return WriteOutcome.WRITTEN if stored else WriteOutcome.ALREADY_PRESENT


def _require_address(address: str, *, identity: str, chain_id: Optional[int] = None) -> None:
    if not is_valid_evm_address(address):
        raise InvalidAddress(
            f"Invalid EVM address format: {describe_address(address)}",
            identity=identity,
            chain_id=chain_id,
        )
