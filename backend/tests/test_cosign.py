import asyncio
import stat
import sys

import pytest

from app.core.config import Settings
from app.core.cosign import ALLOWED_PREDICATE_TYPES, SLSA_PROVENANCE_V1, CosignClient
from app.core.errors import AttestationFetchError, InvalidInput
from app.models.graph import Absent, Present, SourceKind

from factories import IMAGE, envelope, provenance_statement

posix_only = pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a shell script as fake cosign")


def fake_cosign(tmp_path, body: str) -> str:
    script = tmp_path / "cosign"
    script.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


def client_for(binary: str, **overrides) -> CosignClient:
    return CosignClient(Settings(cosign_binary=binary, **overrides))


def test_allow_list_has_exactly_three_types():
    assert ALLOWED_PREDICATE_TYPES == {
        "https://slsa.dev/provenance/v1",
        "https://spdx.dev/Document",
        "https://apko.dev/image-configuration",
    }


def test_unknown_predicate_type_rejected_before_spawning(tmp_path):
    # The binary does not exist: spawning it would raise AttestationFetchError instead.
    client = client_for(str(tmp_path / "missing-cosign"))
    with pytest.raises(InvalidInput):
        asyncio.run(client.fetch_predicate(IMAGE, "linux/amd64", "https://example.com/custom"))


def test_missing_binary_makes_every_source_absent(tmp_path):
    client = client_for(str(tmp_path / "missing-cosign"))
    results = asyncio.run(client.fetch_all(IMAGE, "linux/amd64"))

    assert set(results) == set(SourceKind)
    assert all(isinstance(r, Absent) for r in results.values())


@posix_only
def test_fetch_predicate_passes_arguments(tmp_path):
    binary = fake_cosign(tmp_path, 'echo "$@"')
    out = asyncio.run(client_for(binary).fetch_predicate(IMAGE, "linux/arm64", SLSA_PROVENANCE_V1))

    assert out.strip() == (
        f"download attestation --platform linux/arm64 --predicate-type {SLSA_PROVENANCE_V1} {IMAGE}"
    )


@posix_only
def test_fetch_all_decodes_first_envelope(tmp_path):
    statement = provenance_statement()
    ndjson_file = tmp_path / "att.ndjson"
    ndjson_file.write_text(envelope(statement) + "\n", encoding="utf-8")
    binary = fake_cosign(tmp_path, f'cat "{ndjson_file}"')

    results = asyncio.run(client_for(binary).fetch_all(IMAGE, "linux/amd64"))

    for kind in SourceKind:
        assert results[kind] == Present(statement)


@posix_only
def test_empty_output_is_absent(tmp_path):
    binary = fake_cosign(tmp_path, "exit 0")
    results = asyncio.run(client_for(binary).fetch_all(IMAGE, "linux/amd64"))

    assert all(isinstance(r, Absent) for r in results.values())


@posix_only
def test_nonzero_exit_carries_stderr(tmp_path):
    binary = fake_cosign(tmp_path, 'echo "no matching attestations" >&2\nexit 1')
    with pytest.raises(AttestationFetchError, match="no matching attestations"):
        asyncio.run(client_for(binary).fetch_predicate(IMAGE, "linux/amd64", SLSA_PROVENANCE_V1))


@posix_only
def test_slow_cosign_is_killed(tmp_path):
    binary = fake_cosign(tmp_path, "exec sleep 5")
    client = client_for(binary, cosign_timeout=0.2)

    with pytest.raises(AttestationFetchError, match="timed out"):
        asyncio.run(client.fetch_predicate(IMAGE, "linux/amd64", SLSA_PROVENANCE_V1))


@posix_only
def test_oversized_output_is_rejected(tmp_path):
    binary = fake_cosign(tmp_path, "head -c 2048 /dev/zero")
    client = client_for(binary, max_output_bytes=1024)

    with pytest.raises(AttestationFetchError, match="exceeded"):
        asyncio.run(client.fetch_predicate(IMAGE, "linux/amd64", SLSA_PROVENANCE_V1))


@posix_only
def test_verify_success_and_failure(tmp_path):
    ok = client_for(fake_cosign(tmp_path, 'echo "Verification for $6 --"'))
    result = asyncio.run(ok.verify(IMAGE))
    assert result["success"] is True
    assert result["message"] == "Attestation verified successfully"

    failing_dir = tmp_path / "failing"
    failing_dir.mkdir()
    bad = client_for(fake_cosign(failing_dir, 'echo "none found" >&2\nexit 1'))
    result = asyncio.run(bad.verify(IMAGE))
    assert result == {"success": False, "error": "cosign error: none found"}


class ExitedProcess:
    """A child that finished just as the timeout fired."""

    returncode = 0

    async def communicate(self):
        await asyncio.sleep(5)

    def kill(self):
        raise ProcessLookupError()

    async def wait(self):
        return 0


def test_timeout_tolerates_already_exited_child(monkeypatch):
    async def spawn(*args, **kwargs):
        return ExitedProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)
    client = client_for("cosign", cosign_timeout=0.1)

    with pytest.raises(AttestationFetchError, match="timed out"):
        asyncio.run(client.fetch_predicate(IMAGE, "linux/amd64", SLSA_PROVENANCE_V1))
