"""
Unit tests for fingerprint stores and host-key correlation.
"""

import pytest

from sshscan.extensions import db
from sshscan.models import HostKeyFingerprint
from sshscan.scanner.base import PublicKeyRecord, ScanResult, Target
from sshscan.scanner.errors import ConnectTimeout
from sshscan.scanner.fingerprints import (
    InMemoryFingerprintStore,
    SQLFingerprintStore,
    correlate_host_keys,
)

from conftest import make_record

A = Target("10.0.0.1", 22)
B = Target("10.0.0.2", 22)
C = Target("10.0.0.3", 22)


def result_with_keys(address, *fingerprints, port=22):
    result = ScanResult(target=Target(address, port), address=address)
    result.set_negotiation(make_record())
    for i, fp in enumerate(fingerprints):
        result.keys[f"alg{i}"] = PublicKeyRecord(
            algorithm=f"alg{i}", key_material=fp.encode(), fingerprints={"sha256": fp},
        )
    return result


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        yield InMemoryFingerprintStore()
    else:
        request.getfixturevalue("app")
        yield SQLFingerprintStore(db.session)


class TestStoreContract:

    def test_add_and_find(self, store):
        store.add("SHA256:AAAA", A)
        store.add("SHA256:AAAA", B)
        assert store.find("SHA256:AAAA") == {A, B}
        assert store.find("SHA256:BBBB") == set()

    def test_add_is_idempotent(self, store):
        store.add("SHA256:AAAA", A)
        store.add("SHA256:AAAA", A)
        assert store.find("SHA256:AAAA") == {A}

    def test_clear_removes_only_that_target(self, store):
        store.add("SHA256:AAAA", A)
        store.add("SHA256:CCCC", A)
        store.add("SHA256:AAAA", B)
        store.clear(A)
        assert store.find("SHA256:AAAA") == {B}
        assert store.find("SHA256:CCCC") == set()

    def test_clear_unknown_target(self, store):
        store.clear(C)
        assert store.find("SHA256:AAAA") == set()

    def test_port_is_part_of_identity(self, store):
        store.add("SHA256:AAAA", Target("10.0.0.1", 22))
        store.add("SHA256:AAAA", Target("10.0.0.1", 2222))
        store.clear(Target("10.0.0.1", 22))
        assert store.find("SHA256:AAAA") == {Target("10.0.0.1", 2222)}


class TestSQLStore:

    def test_rows_persist(self, app):
        store = SQLFingerprintStore(db.session)
        store.add("SHA256:AAAA", A)
        assert db.session.query(HostKeyFingerprint).count() == 1
        row = db.session.query(HostKeyFingerprint).one()
        assert (row.fingerprint, row.host, row.port) == ("SHA256:AAAA", "10.0.0.1", 22)


class TestCorrelateHostKeys:

    def test_duplicates_are_symmetric(self, store):
        r1 = result_with_keys("10.0.0.1", "SHA256:AAAA")
        r2 = result_with_keys("10.0.0.2", "SHA256:AAAA")
        correlate_host_keys([r1, r2], store)
        assert r1.duplicate_host_key_addresses == [B]
        assert r2.duplicate_host_key_addresses == [A]

    def test_host_never_lists_itself(self, store):
        r1 = result_with_keys("10.0.0.1", "SHA256:AAAA", "SHA256:BBBB")
        correlate_host_keys([r1], store)
        assert r1.duplicate_host_key_addresses == []

    def test_order_does_not_matter(self):
        def run(order):
            results = {
                "a": result_with_keys("10.0.0.1", "SHA256:AAAA"),
                "b": result_with_keys("10.0.0.2", "SHA256:AAAA", "SHA256:BBBB"),
                "c": result_with_keys("10.0.0.3", "SHA256:BBBB"),
            }
            correlate_host_keys([results[k] for k in order], InMemoryFingerprintStore())
            return {k: r.duplicate_host_key_addresses for k, r in results.items()}

        assert run("abc") == run("cba") == run("bca")
        assert run("abc")["b"] == [A, C]

    def test_failed_hosts_are_skipped(self, store):
        r1 = result_with_keys("10.0.0.1", "SHA256:AAAA")
        r2 = result_with_keys("10.0.0.2", "SHA256:AAAA")
        r2.fail(ConnectTimeout("timed out"))
        correlate_host_keys([r1, r2], store)
        assert r1.duplicate_host_key_addresses == []
        assert r2.duplicate_host_key_addresses == []

    def test_rescan_drops_stale_associations(self, store):
        r1 = result_with_keys("10.0.0.1", "SHA256:OLD")
        r2 = result_with_keys("10.0.0.2", "SHA256:OLD")
        correlate_host_keys([r1, r2], store)
        assert r2.duplicate_host_key_addresses == [A]

        # 10.0.0.1 rotated its key; only it is rescanned.
        r1_again = result_with_keys("10.0.0.1", "SHA256:NEW")
        correlate_host_keys([r1_again], store)
        assert store.find("SHA256:OLD") == {B}
        assert r1_again.duplicate_host_key_addresses == []

    def test_names_resolving_to_same_address_are_one_host(self, store):
        r1 = result_with_keys("10.0.0.1", "SHA256:AAAA")
        r1.target = Target("alias-one.example.com", 22)
        r2 = result_with_keys("10.0.0.1", "SHA256:AAAA")
        r2.target = Target("alias-two.example.com", 22)
        correlate_host_keys([r1, r2], store)
        assert r1.duplicate_host_key_addresses == []
