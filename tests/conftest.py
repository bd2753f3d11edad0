import pathlib
import sys
import threading
from typing import List, Optional, Tuple

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import provisioner`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from provisioner.issuer_client import AddressIssuer  # noqa: E402
from provisioner.wallet_mapping.coordinator import WalletMappingService  # noqa: E402
from provisioner.wallet_mapping.repository import MappingRepository  # noqa: E402
from provisioner.wallet_mapping.store import MemoryMappingStore  # noqa: E402


PUBKEY_A = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
PUBKEY_B = "B4fiuy1rJgmbTrraeZpcEtGtFzmt2GVYr1XEoSY7HqqC"


class CountingIssuer(AddressIssuer):
    """Deterministic issuer: 0x000...001, 0x000...002, ... Records every call."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counter = 0
        self.calls: List[Tuple[str, Optional[int]]] = []

    def issue(self, identity: str, chain_id: Optional[int] = None) -> str:
        with self._lock:
            self.counter += 1
            self.calls.append((identity, chain_id))
            return f"0x{self.counter:040x}"

    @property
    def canonical_calls(self) -> List[Tuple[str, Optional[int]]]:
        return [c for c in self.calls if c[1] is None]


@pytest.fixture
def store() -> MemoryMappingStore:
    return MemoryMappingStore()


@pytest.fixture
def issuer() -> CountingIssuer:
    return CountingIssuer()


@pytest.fixture
def service(store: MemoryMappingStore, issuer: CountingIssuer) -> WalletMappingService:
    return WalletMappingService(MappingRepository(store), issuer)
