import pytest

from provisioner.issuer_client import AddressIssuer, AddressIssuerError
from provisioner.wallet_mapping.coordinator import WalletMappingService
from provisioner.wallet_mapping.errors import InvalidAddress, InvalidRequest, IssuerFailure, NotProvisioned
from provisioner.wallet_mapping.repository import MappingRepository

I1 = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
OTHER = "B4fiuy1rJgmbTrraeZpcEtGtFzmt2GVYr1XEoSY7HqqC"


def test_concrete_scenario_override_rotates_only_one_chain(service, store):
    provisioned = service.provision(I1, [1, 137, 42161])
    x = provisioned.canonical_address
    assert provisioned.chain_mappings == {1: x, 137: x, 42161: x}

    result = service.override(I1, 137)
    y = result.new_address

    assert result.chain_id == 137
    assert y != x
    assert store.get(f"{I1}:1") == x
    assert store.get(f"{I1}:42161") == x
    assert store.get(f"{I1}:137") == y
    assert store.get(f"default:{I1}") == x


def test_override_mints_chain_scoped_material(service, issuer):
    service.provision(I1, [1, 137])
    service.override(I1, 137)

    assert issuer.calls == [(I1, None), (I1, 137)]


def test_override_is_not_idempotent(service, store):
    service.provision(I1, [137])

    first = service.override(I1, 137)
    second = service.override(I1, 137)

    assert first.new_address != second.new_address
    assert store.get(f"{I1}:137") == second.new_address


def test_override_survives_later_provisioning(service):
    service.provision(I1, [1, 137])
    rotated = service.override(I1, 137).new_address

    again = service.provision(I1, [1, 137, 10])

    assert again.chain_mappings[137] == rotated
    assert again.chain_mappings[1] == again.canonical_address
    assert again.chain_mappings[10] == again.canonical_address


def test_override_with_explicit_address(service, issuer, store):
    service.provision(I1, [1, 137])
    explicit = "0x" + "AbCdEf0123" * 4

    result = service.override(I1, 137, explicit)

    assert result.new_address == explicit
    assert store.get(f"{I1}:137") == explicit
    assert len(issuer.calls) == 1


def test_override_can_target_a_chain_never_provisioned(service, store):
    provisioned = service.provision(I1, [1])

    result = service.override(I1, 56)

    assert store.get(f"{I1}:56") == result.new_address
    assert store.get(f"{I1}:1") == provisioned.canonical_address


def test_override_requires_provisioned_identity(service, issuer, store):
    with pytest.raises(NotProvisioned):
        service.override(I1, 137)

    assert issuer.calls == []
    assert store.snapshot() == {}


def test_override_of_one_identity_leaves_others_alone(service, store):
    a = service.provision(I1, [137])
    b = service.provision(OTHER, [137])

    service.override(I1, 137)

    assert store.get(f"{OTHER}:137") == b.canonical_address
    assert store.get(f"default:{OTHER}") == b.canonical_address
    assert store.get(f"default:{I1}") == a.canonical_address


@pytest.mark.parametrize("bad", ["abc", "0xshort", "0x" + "z" * 40, "0x" + "1" * 41])
def test_malformed_explicit_address_is_rejected_without_mutation(service, store, bad):
    service.provision(I1, [1, 137])
    before = store.snapshot()
    attempts = len(store.write_attempts)

    with pytest.raises(InvalidAddress):
        service.override(I1, 137, bad)

    assert store.snapshot() == before
    assert len(store.write_attempts) == attempts


def test_override_rejects_bad_chain_id(service):
    service.provision(I1, [1])
    with pytest.raises(InvalidRequest):
        service.override(I1, -5)


def test_override_issuer_failure_keeps_previous_mapping(store):
    class FailingAfterFirst(AddressIssuer):
        def __init__(self):
            self.n = 0

        def issue(self, identity, chain_id=None):
            self.n += 1
            if self.n > 1:
                raise AddressIssuerError("CubeSigner CLI timed out after 30 seconds")
            return "0x" + "42" * 20

    svc = WalletMappingService(MappingRepository(store), FailingAfterFirst())
    x = svc.provision(I1, [137]).canonical_address

    with pytest.raises(IssuerFailure):
        svc.override(I1, 137)

    assert store.get(f"{I1}:137") == x
