"""
Unit tests for host key collection (ssh-keyscan output parsing and the
subprocess contract).
"""

import base64
import hashlib
import subprocess
from unittest.mock import MagicMock, patch

from paramiko.pkey import UnknownKeyType

from sshscan.scanner.engines.hostkey_engine import (
    HostKeyEngine,
    build_key_record,
    compute_fingerprints,
    parse_keyscan_output,
)

from conftest import key_blob, keyscan_line


class TestFingerprints:

    def test_formats(self):
        blob = key_blob("ssh-ed25519")
        fps = compute_fingerprints(blob)
        md5 = hashlib.md5(blob).hexdigest()
        assert fps["md5"] == "MD5:" + ":".join(md5[i:i + 2] for i in range(0, 32, 2))
        sha256 = base64.b64encode(hashlib.sha256(blob).digest()).decode().rstrip("=")
        assert fps["sha256"] == "SHA256:" + sha256
        assert fps["sha1"].startswith("SHA1:")
        assert not fps["sha1"].endswith("=")

    def test_deterministic(self):
        blob = key_blob("ssh-rsa", b"\x02" * 40)
        assert compute_fingerprints(blob) == compute_fingerprints(bytes(blob))


class TestBuildKeyRecord:

    def test_valid_pair(self):
        material = base64.b64encode(key_blob("ssh-ed25519")).decode()
        record = build_key_record("ssh-ed25519", material)
        assert record.algorithm == "ssh-ed25519"
        assert record.key_material == key_blob("ssh-ed25519")
        assert set(record.fingerprints) == {"md5", "sha1", "sha256"}

    def test_undecodable_material(self):
        assert build_key_record("ssh-ed25519", "not*base64!") is None

    def test_blob_for_another_algorithm(self):
        material = base64.b64encode(key_blob("ssh-rsa")).decode()
        assert build_key_record("ssh-ed25519", material) is None

    def test_key_type_paramiko_cannot_load_has_no_size(self):
        material = base64.b64encode(key_blob("ssh-ed25519")).decode()
        with patch("sshscan.scanner.engines.hostkey_engine.paramiko.PKey.from_type_string",
                   side_effect=UnknownKeyType("ssh-ed25519", b"")):
            record = build_key_record("ssh-ed25519", material)
        assert record is not None
        assert record.bits is None

    def test_size_comes_from_loaded_key(self):
        material = base64.b64encode(key_blob("ssh-ed25519")).decode()
        key = MagicMock()
        key.get_bits.return_value = 256
        with patch("sshscan.scanner.engines.hostkey_engine.paramiko.PKey.from_type_string",
                   return_value=key) as load:
            record = build_key_record("ssh-ed25519", material)
        load.assert_called_once_with("ssh-ed25519", key_blob("ssh-ed25519"))
        assert record.bits == 256


class TestParseKeyscanOutput:

    def test_recognized_algorithms(self):
        output = "\n".join([
            "# 192.0.2.1:22 SSH-2.0-OpenSSH_9.6",
            keyscan_line("192.0.2.1", "ssh-rsa"),
            keyscan_line("192.0.2.1", "ecdsa-sha2-nistp256"),
            keyscan_line("192.0.2.1", "ssh-ed25519"),
        ])
        keys = parse_keyscan_output(output)
        assert set(keys) == {"ssh-rsa", "ecdsa-sha2-nistp256", "ssh-ed25519"}

    def test_unrecognized_tokens_ignored(self):
        output = keyscan_line("h", "ecdsa-sha2-nistp384") + "\n" + keyscan_line("h", "ssh-dss")
        assert set(parse_keyscan_output(output)) == {"ssh-dss"}

    def test_last_key_for_algorithm_wins(self):
        output = "\n".join([
            keyscan_line("h", "ssh-ed25519", b"\x01" * 32),
            keyscan_line("h", "ssh-ed25519", b"\x02" * 32),
        ])
        keys = parse_keyscan_output(output)
        assert keys["ssh-ed25519"].key_material == key_blob("ssh-ed25519", b"\x02" * 32)

    def test_empty_and_garbled(self):
        assert parse_keyscan_output("") == {}
        assert parse_keyscan_output("ssh-rsa") == {}
        assert parse_keyscan_output("h ssh-rsa %%%%") == {}


class TestHostKeyEngine:

    def test_command(self):
        engine = HostKeyEngine(keyscan_bin="/usr/bin/ssh-keyscan", timeout=4)
        assert engine.command("192.0.2.1", 2222) == [
            "/usr/bin/ssh-keyscan", "-T", "4", "-t", "rsa,dsa,ecdsa,ed25519",
            "-p", "2222", "192.0.2.1",
        ]

    def test_runs_keyscan_and_parses(self):
        runner = MagicMock(return_value=subprocess.CompletedProcess(
            args=[], returncode=0, stdout=keyscan_line("192.0.2.1", "ssh-ed25519"), stderr="",
        ))
        keys = HostKeyEngine(runner=runner).run("192.0.2.1", 22)
        assert set(keys) == {"ssh-ed25519"}
        _, kwargs = runner.call_args
        assert kwargs["capture_output"] is True
        assert kwargs["check"] is False

    def test_missing_binary_is_empty(self):
        runner = MagicMock(side_effect=FileNotFoundError("ssh-keyscan"))
        assert HostKeyEngine(runner=runner).run("192.0.2.1", 22) == {}

    def test_timeout_keeps_partial_output(self):
        partial = keyscan_line("192.0.2.1", "ssh-rsa").encode()
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(["ssh-keyscan"], 15, output=partial))
        assert set(HostKeyEngine(runner=runner).run("192.0.2.1", 22)) == {"ssh-rsa"}

    def test_other_os_error_is_empty(self):
        runner = MagicMock(side_effect=PermissionError("denied"))
        assert HostKeyEngine(runner=runner).run("192.0.2.1", 22) == {}
