# sshscan/scanner/fingerprints.py
"""
Host key fingerprint correlation.

Detects host-key reuse across a batch: two endpoints presenting the same key
fingerprint are each other's duplicates.

Stores implement three operations:

    clear(target)            forget every fingerprint previously registered for target
    add(fingerprint, target) register that target presents fingerprint
    find(fingerprint)        every target registered under fingerprint

InMemoryFingerprintStore lives for one batch. SQLFingerprintStore keeps the
associations in the database so reuse is also found across batches.

Stores are only touched from the orchestrator's sequential post-pass.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Set

from sqlalchemy import delete, select

from sshscan.models import HostKeyFingerprint
from sshscan.scanner.base import ScanResult, Target

logger = logging.getLogger(__name__)


class FingerprintStore(ABC):

    @abstractmethod
    def clear(self, target: Target) -> None:
        ...

    @abstractmethod
    def add(self, fingerprint: str, target: Target) -> None:
        ...

    @abstractmethod
    def find(self, fingerprint: str) -> Set[Target]:
        ...


class InMemoryFingerprintStore(FingerprintStore):
    """Batch-scoped store: fingerprint → targets, with a reverse index for clear()."""

    def __init__(self):
        self._by_fingerprint: Dict[str, Set[Target]] = {}
        self._by_target: Dict[Target, Set[str]] = {}

    def clear(self, target: Target) -> None:
        for fingerprint in self._by_target.pop(target, set()):
            targets = self._by_fingerprint.get(fingerprint)
            if targets is None:
                continue
            targets.discard(target)
            if not targets:
                del self._by_fingerprint[fingerprint]

    def add(self, fingerprint: str, target: Target) -> None:
        self._by_fingerprint.setdefault(fingerprint, set()).add(target)
        self._by_target.setdefault(target, set()).add(fingerprint)

    def find(self, fingerprint: str) -> Set[Target]:
        return set(self._by_fingerprint.get(fingerprint, set()))


class SQLFingerprintStore(FingerprintStore):
    """
    Persistent store on the host_key_fingerprint table.

    `session` is a SQLAlchemy session (normally `db.session`); every
    operation commits so a crash mid-batch leaves per-host state consistent.
    """

    def __init__(self, session):
        self._model = HostKeyFingerprint
        self._session = session

    def clear(self, target: Target) -> None:
        m = self._model
        self._session.execute(
            delete(m).where(m.host == target.host, m.port == target.port)
        )
        self._session.commit()

    def add(self, fingerprint: str, target: Target) -> None:
        m = self._model
        exists = self._session.execute(
            select(m.id).where(
                m.fingerprint == fingerprint, m.host == target.host, m.port == target.port
            )
        ).first()
        if exists is None:
            self._session.add(m(fingerprint=fingerprint, host=target.host, port=target.port))
            self._session.commit()

    def find(self, fingerprint: str) -> Set[Target]:
        m = self._model
        rows = self._session.execute(
            select(m.host, m.port).where(m.fingerprint == fingerprint)
        ).all()
        return {Target(host=host, port=port) for host, port in rows}


def _fingerprints(result: ScanResult) -> Iterable[str]:
    for key in result.keys.values():
        yield from key.fingerprints.values()


def correlate_host_keys(results: List[ScanResult], store: FingerprintStore) -> None:
    """
    Decorate every successful result with the other endpoints sharing a key.

    Two passes over the whole list: every host is cleared and re-registered
    before any host is queried, so the outcome does not depend on the order
    the results are visited in.
    """
    for result in results:
        store.clear(result.endpoint)
        if result.error is not None:
            continue
        for fingerprint in _fingerprints(result):
            store.add(fingerprint, result.endpoint)

    for result in results:
        if result.error is not None:
            continue
        own = result.endpoint
        duplicates: Set[Target] = set()
        for fingerprint in _fingerprints(result):
            duplicates.update(t for t in store.find(fingerprint) if t != own)
        result.duplicate_host_key_addresses = sorted(duplicates, key=str)
        if duplicates:
            logger.warning(
                "%s shares a host key with %s",
                own, ", ".join(str(t) for t in result.duplicate_host_key_addresses),
            )
