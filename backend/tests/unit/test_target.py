"""
Unit tests for Target parsing and ScanResult bookkeeping.
"""

import pytest

from sshscan.scanner.base import ScanResult, ScanState, Target
from sshscan.scanner.errors import ConnectTimeout

from conftest import make_record


class TestTargetParse:

    def test_host_only_gets_default_port(self):
        assert Target.parse("example.com") == Target("example.com", 22)

    def test_host_and_port(self):
        assert Target.parse("10.0.0.1:2222") == Target("10.0.0.1", 2222)

    def test_bracketed_ipv6_with_port(self):
        assert Target.parse("[2001:db8::1]:2200") == Target("2001:db8::1", 2200)

    def test_bracketed_ipv6_without_port(self):
        assert Target.parse("[2001:db8::1]") == Target("2001:db8::1", 22)

    def test_bare_ipv6_literal(self):
        assert Target.parse("2001:db8::1") == Target("2001:db8::1", 22)

    def test_custom_default_port(self):
        assert Target.parse("host", default_port=2022).port == 2022

    def test_whitespace_is_stripped(self):
        assert Target.parse("  host:23  ") == Target("host", 23)

    @pytest.mark.parametrize("spec", [
        "", "   ", ":22", "host:", "host:abc", "host:0", "host:65536",
        "[2001:db8::1", "[2001:db8::1]x22",
    ])
    def test_invalid_specifiers(self, spec):
        with pytest.raises(ValueError):
            Target.parse(spec)

    def test_str_brackets_ipv6(self):
        assert str(Target("2001:db8::1", 22)) == "[2001:db8::1]:22"
        assert str(Target("10.0.0.1", 22)) == "10.0.0.1:22"


class TestScanResult:

    def test_endpoint_prefers_probed_address(self):
        result = ScanResult(target=Target("example.com", 2222), address="192.0.2.7")
        assert result.endpoint == Target("192.0.2.7", 2222)

    def test_endpoint_falls_back_to_host(self):
        result = ScanResult(target=Target("192.0.2.7", 22))
        assert result.endpoint == Target("192.0.2.7", 22)

    def test_error_and_negotiation_are_exclusive(self):
        result = ScanResult(target=Target("h", 22))
        result.set_negotiation(make_record())
        assert result.succeeded
        assert result.auth_methods == {"publickey"}

        result.fail(ConnectTimeout("timed out"))
        assert result.negotiation is None
        assert result.auth_methods == set()
        assert result.state is ScanState.FAILED
        assert not result.succeeded

        result.clear_error()
        assert result.error is None
        assert result.state is ScanState.PROBING
        result.set_negotiation(make_record())
        assert result.error is None and result.negotiation is not None

    def test_finish_always_ends_done(self):
        result = ScanResult(target=Target("h", 22))
        result.start()
        result.fail(ConnectTimeout("timed out"))
        result.finish()
        assert result.state is ScanState.DONE
        assert result.error is not None

    def test_to_dict_of_failed_result(self):
        result = ScanResult(target=Target("h", 22), address="192.0.2.1")
        result.start()
        result.fail(ConnectTimeout("timed out during connect", "192.0.2.1:22"))
        result.finish()
        data = result.to_dict()
        assert data["target"] == "h:22"
        assert data["ip"] == "192.0.2.1"
        assert data["error"] == {"type": "ConnectTimeout", "message": "timed out during connect"}
        assert "keyExchange" not in data
        assert data["grade"] is None
        assert data["scanDurationSeconds"] >= 0

    def test_to_dict_of_successful_result(self):
        result = ScanResult(target=Target("h", 22), address="192.0.2.1")
        result.set_negotiation(make_record())
        data = result.to_dict()
        assert data["keyExchange"] == ["curve25519-sha256", "diffie-hellman-group14-sha256"]
        assert data["authMethods"] == ["publickey"]
        assert data["serverSoftware"] == "OpenSSH_9.6p1"
        assert data["error"] is None
