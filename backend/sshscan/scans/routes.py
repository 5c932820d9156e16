from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple

from flask import Blueprint, current_app, jsonify, request

from sshscan.scanner import ScanRequest
from sshscan.scanner.base import Target
from sshscan.scanner.errors import ProtocolError

logger = logging.getLogger(__name__)

scans_bp = Blueprint("scans", __name__)

ORCHESTRATOR_KEY = "sshscan.orchestrator"

MAX_TARGETS = 1024
MAX_POOL_SIZE = 64
MAX_TIMEOUT = 60


def parse_targets(value: Any) -> Tuple[Optional[List[Target]], Optional[str]]:
    if not isinstance(value, list) or not value:
        return None, "targets must be a non-empty list of \"host[:port]\" strings"
    if len(value) > MAX_TARGETS:
        return None, f"at most {MAX_TARGETS} targets per request"
    targets = []
    for item in value:
        if not isinstance(item, str):
            return None, f"invalid target {item!r}"
        try:
            targets.append(Target.parse(item))
        except ValueError as e:
            return None, str(e)
    return targets, None


def validate_options(body: dict) -> Optional[str]:
    pool_size = body.get("poolSize")
    if pool_size is not None:
        if not isinstance(pool_size, int) or isinstance(pool_size, bool):
            return "poolSize must be an integer"
        if not 1 <= pool_size <= MAX_POOL_SIZE:
            return f"poolSize must be between 1 and {MAX_POOL_SIZE}"

    timeout = body.get("timeout")
    if timeout is not None:
        if not isinstance(timeout, (int, float)) or isinstance(timeout, bool):
            return "timeout must be a number of seconds"
        if not 0 < timeout <= MAX_TIMEOUT:
            return f"timeout must be greater than 0 and at most {MAX_TIMEOUT}"

    policy = body.get("policy")
    if policy is not None and not isinstance(policy, dict):
        return "policy must be an object"
    return None


@scans_bp.post("/scans")
def create_scan():
    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        return jsonify(error="request body must be a JSON object"), 400

    targets, err = parse_targets(body.get("targets"))
    if err:
        return jsonify(error=err), 400

    err = validate_options(body)
    if err:
        return jsonify(error=err), 400

    scan_request = ScanRequest(
        targets=targets,
        pool_size=body.get("poolSize"),
        timeout=float(body["timeout"]) if body.get("timeout") is not None else None,
        policy=body.get("policy"),
    )

    orchestrator = current_app.extensions[ORCHESTRATOR_KEY]
    try:
        batch = orchestrator.scan(scan_request)
    except ProtocolError as e:
        logger.error("Scan of %d target(s) aborted: %s", len(targets), e)
        return jsonify(status="failed", error=str(e)), 500

    return jsonify(status="completed", **batch.to_dict()), 200
