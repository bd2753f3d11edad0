import threading
from concurrent.futures import ThreadPoolExecutor

from provisioner.issuer_client import AddressIssuer
from provisioner.wallet_mapping.coordinator import WalletMappingService
from provisioner.wallet_mapping.repository import MappingRepository
from provisioner.wallet_mapping.store import MemoryMappingStore, SqliteMappingStore

PUBKEY = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WORKERS = 8


class BarrierIssuer(AddressIssuer):
    """Every caller blocks until all workers have minted, so all of them race the write."""

    def __init__(self, parties: int) -> None:
        self._barrier = threading.Barrier(parties, timeout=10)
        self._lock = threading.Lock()
        self.minted = []

    def issue(self, identity, chain_id=None):
        with self._lock:
            address = f"0x{len(self.minted) + 1:040x}"
            self.minted.append(address)
        self._barrier.wait()
        return address


def _race(service, chain_ids):
    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(service.provision, PUBKEY, chain_ids) for _ in range(WORKERS)]
        return [f.result(timeout=30) for f in futures]


def test_concurrent_first_provision_converges_on_one_address():
    store = MemoryMappingStore()
    issuer = BarrierIssuer(WORKERS)
    svc = WalletMappingService(MappingRepository(store), issuer)

    results = _race(svc, [1, 137, 42161])

    # Every worker minted (benign redundancy) but exactly one candidate was stored.
    assert len(issuer.minted) == WORKERS
    canonical = {r.canonical_address for r in results}
    assert len(canonical) == 1
    (winner,) = canonical
    assert winner in issuer.minted

    for r in results:
        assert r.chain_mappings == {1: winner, 137: winner, 42161: winner}

    stored = store.snapshot()
    assert stored[f"default:{PUBKEY}"] == winner
    assert set(stored.values()) == {winner}
    losers = set(issuer.minted) - {winner}
    assert not losers & set(stored.values())


def test_concurrent_chain_claims_store_one_value(issuer):
    store = MemoryMappingStore()
    svc = WalletMappingService(MappingRepository(store), issuer)
    svc.provision(PUBKEY, [1])

    results = _race(svc, [137])

    values = {r.chain_mappings[137] for r in results}
    assert len(values) == 1
    assert store.get(f"{PUBKEY}:137") == values.pop()
    assert len(issuer.calls) == 1


def test_concurrent_provision_against_sqlite(tmp_path):
    store = SqliteMappingStore(str(tmp_path / "mappings.db"))
    issuer = BarrierIssuer(WORKERS)
    svc = WalletMappingService(MappingRepository(store), issuer)

    results = _race(svc, [1, 10])

    canonical = {r.canonical_address for r in results}
    assert len(canonical) == 1
    winner = canonical.pop()
    assert store.get(f"default:{PUBKEY}") == winner
    assert store.get(f"{PUBKEY}:1") == winner
    assert store.get(f"{PUBKEY}:10") == winner
