# sshscan/scanner/orchestrator.py
"""
Scan Orchestrator.

Coordinates a batch scan:

    1. Parse every target specifier ("host", "host:port", "[v6]:port")
    2. Parallel phase, bounded worker pool, one target per task:
           Resolve → Probe (IPv6 first, one IPv4 retry) → collect host keys
    3. Join every worker
    4. Sequential post-pass over the joined results, in input order:
           fingerprint correlation → SSHFP cross-check → compliance → grade

Per target:  PENDING → RESOLVING → PROBING → (ENRICHING | FAILED) → DONE

A per-host ProbeError is recorded on that host's result and the batch goes
on. A ProtocolError is logged and propagates out of scan(); targets that had
not started yet are cancelled.

Usage:
    from sshscan.scanner import ScanOrchestrator, ScanRequest

    orchestrator = ScanOrchestrator()
    batch = orchestrator.scan(ScanRequest(targets=["example.com", "10.0.0.1:2222"]))
    # batch.to_dict() is JSON-safe
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sshscan.config import ScanConfig
from sshscan.scanner.analyzers import ComplianceAnalyzer, Grader
from sshscan.scanner.base import ScanResult, ScanState, Target, now_utc
from sshscan.scanner.engines import HostKeyEngine, SSHEngine, SSHFPEngine
from sshscan.scanner.errors import PolicyError, ProbeError, ProtocolError, ResolutionError
from sshscan.scanner.fingerprints import (
    FingerprintStore,
    InMemoryFingerprintStore,
    correlate_host_keys,
)
from sshscan.scanner.policy import Policy, load_policy
from sshscan.scanner.resolver import TargetResolver

logger = logging.getLogger(__name__)


@dataclass
class ScanRequest:
    targets: Sequence[Union[str, Target]]
    pool_size: Optional[int] = None             # None → config.pool_size
    timeout: Optional[float] = None             # per-connection; None → config.timeout
    policy: Any = None                          # Policy, parsed mapping, YAML path or None


@dataclass
class ScanBatch:
    results: List[ScanResult] = field(default_factory=list)
    policy: Optional[Policy] = None
    policy_error: Optional[PolicyError] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "policy": self.policy.name if self.policy else None,
            "policyError": self.policy_error.message if self.policy_error else None,
            "startTime": self.started_at.isoformat() if self.started_at else None,
            "endTime": self.finished_at.isoformat() if self.finished_at else None,
        }


class ScanOrchestrator:
    """
    Every collaborator can be injected; defaults are built from `config`.

    `store` is used for fingerprint correlation when given (e.g. an
    SQLFingerprintStore). Without one, each scan() gets a fresh in-memory
    store that lives for that batch only.
    """

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        resolver: Optional[TargetResolver] = None,
        ssh_engine: Optional[SSHEngine] = None,
        hostkey_engine: Optional[HostKeyEngine] = None,
        sshfp_engine: Optional[SSHFPEngine] = None,
        store: Optional[FingerprintStore] = None,
    ):
        self.config = config or ScanConfig()
        self.resolver = resolver or TargetResolver()
        self.ssh_engine = ssh_engine or SSHEngine(
            timeout=self.config.timeout,
            client_banner=self.config.client_banner,
            auth_username=self.config.auth_username,
        )
        self.hostkey_engine = hostkey_engine or HostKeyEngine(
            keyscan_bin=self.config.keyscan_bin,
            timeout=self.config.keyscan_timeout,
        )
        self.sshfp_engine = sshfp_engine or SSHFPEngine()
        self.store = store

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def scan(self, request: ScanRequest) -> ScanBatch:
        """
        Scan every target of `request`. Results come back in input order,
        one per target.

        Raises:
            ValueError:    a target specifier or the pool size is invalid
                           (nothing has been scanned yet)
            ProtocolError: propagated from a worker
        """
        targets = [t if isinstance(t, Target) else Target.parse(t) for t in request.targets]
        pool_size = request.pool_size if request.pool_size is not None else self.config.pool_size
        if pool_size < 1:
            raise ValueError(f"pool size must be at least 1, got {pool_size}")
        engine = self._ssh_engine_for(request.timeout)

        batch = ScanBatch(started_at=now_utc())
        logger.info("Scanning %d target(s) with %d worker(s)", len(targets), pool_size)

        results: List[Optional[ScanResult]] = [None] * len(targets)
        if targets:
            with ThreadPoolExecutor(max_workers=min(pool_size, len(targets))) as executor:
                future_to_index = {
                    executor.submit(self.scan_target, target, engine): i
                    for i, target in enumerate(targets)
                }
                try:
                    for future in as_completed(future_to_index):
                        results[future_to_index[future]] = future.result()
                except ProtocolError:
                    cancelled = sum(1 for f in future_to_index if f.cancel())
                    logger.error("Scan aborted, %d pending target(s) cancelled", cancelled)
                    raise

        batch.results = results
        batch.policy, batch.policy_error = self.post_process(batch.results, request.policy)
        batch.finished_at = now_utc()

        failed = sum(1 for r in batch.results if r.error is not None)
        logger.info(
            "Scan finished: %d target(s), %d failed, %.1fs",
            len(batch.results), failed,
            (batch.finished_at - batch.started_at).total_seconds(),
        )
        return batch

    # ------------------------------------------------------------------
    # Parallel phase: one target
    # ------------------------------------------------------------------

    def scan_target(self, target: Target, ssh_engine: Optional[SSHEngine] = None) -> ScanResult:
        """Resolve, probe and collect host keys for one target. Runs in a worker."""
        engine = ssh_engine or self.ssh_engine
        result = ScanResult(target=target)
        result.start()

        try:
            self._resolve_and_probe(result, engine)
        except ProtocolError:
            logger.exception("Protocol error while scanning %s", target)
            raise

        if result.succeeded:
            result.state = ScanState.ENRICHING
            result.keys = self.hostkey_engine.run(result.address, target.port)

        result.finish()
        return result

    def _resolve_and_probe(self, result: ScanResult, engine: SSHEngine) -> None:
        result.state = ScanState.RESOLVING
        try:
            resolution = self.resolver.resolve(result.target)
        except ResolutionError as e:
            logger.info("%s: %s", result.target, e.message)
            result.fail(e)
            return
        result.hostname = resolution.hostname

        result.state = ScanState.PROBING
        candidate = resolution.primary
        self._probe(result, engine, candidate.address)

        fallback = resolution.fallback_for(candidate)
        if result.error is not None and fallback is not None:
            # The IPv6 error is dropped here; the IPv4 attempt decides the outcome.
            logger.info(
                "%s: IPv6 probe of %s failed (%s), retrying over IPv4 %s",
                result.target, candidate.address, result.error, fallback.address,
            )
            result.clear_error()
            self._probe(result, engine, fallback.address)

        if resolution.is_literal:
            result.hostname = self.resolver.reverse(result.address)

    def _probe(self, result: ScanResult, engine: SSHEngine, address: str) -> None:
        result.address = address
        try:
            record = engine.run(address, result.target.port)
        except ProbeError as e:
            logger.info("Probe of %s failed: %s", result.endpoint, e)
            result.fail(e)
            return
        result.set_negotiation(record)

    def _ssh_engine_for(self, timeout: Optional[float]) -> SSHEngine:
        if timeout is None or timeout == self.ssh_engine.timeout:
            return self.ssh_engine
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        return SSHEngine(
            timeout=timeout,
            client_banner=self.config.client_banner,
            auth_username=self.config.auth_username,
        )

    # ------------------------------------------------------------------
    # Sequential post-pass
    # ------------------------------------------------------------------

    def post_process(
        self, results: List[ScanResult], policy_source: Any = None
    ) -> Tuple[Optional[Policy], Optional[PolicyError]]:
        """
        Single-threaded enrichment over the joined results.

        Returns (policy, policy_error). A PolicyError skips compliance and
        grading for the whole batch; the raw results are left as they are.
        """
        store = self.store if self.store is not None else InMemoryFingerprintStore()
        correlate_host_keys(results, store)

        for result in results:
            if result.succeeded and result.hostname:
                result.dns_keys = self.sshfp_engine.run(result.hostname, result.keys)

        if policy_source is None:
            policy_source = self.config.policy_file
        try:
            policy = load_policy(policy_source)
        except PolicyError as e:
            logger.error("Policy rejected, compliance skipped for this batch: %s", e)
            return None, e
        if policy is None:
            return None, None

        # The grader reads the verdict the compliance analyzer writes.
        analyzers = [ComplianceAnalyzer(policy), Grader(policy.ranking)]
        for result in results:
            for analyzer in analyzers:
                analyzer.run(result)
        return policy, None
