import asyncio
import contextlib
import logging
from typing import Dict, List, Optional

from app.core.config import Settings, get_settings
from app.core.envelope import first_statement
from app.core.errors import AttestationFetchError, InvalidInput
from app.models.graph import Absent, PredicateResult, Present, SourceKind

logger = logging.getLogger(__name__)

SLSA_PROVENANCE_V1 = "https://slsa.dev/provenance/v1"
SPDX_DOCUMENT = "https://spdx.dev/Document"
APKO_CONFIGURATION = "https://apko.dev/image-configuration"

# Only these predicate types are ever passed to cosign.
PREDICATE_TYPES: Dict[SourceKind, str] = {
    SourceKind.PROVENANCE: SLSA_PROVENANCE_V1,
    SourceKind.SBOM: SPDX_DOCUMENT,
    SourceKind.BUILD_CONFIG: APKO_CONFIGURATION,
}
ALLOWED_PREDICATE_TYPES = frozenset(PREDICATE_TYPES.values())


class CosignClient:
    """
    Thin async wrapper around the cosign CLI.

    cosign does all signature handling. This class only spawns it, enforces
    the timeout and output cap, and hands back raw stdout.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def _run(self, args: List[str]) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.settings.cosign_binary,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AttestationFetchError(f"cosign error: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.settings.cosign_timeout
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise AttestationFetchError("cosign command timed out")

        if len(stdout) > self.settings.max_output_bytes:
            raise AttestationFetchError(
                f"cosign output exceeded {self.settings.max_output_bytes} bytes"
            )
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise AttestationFetchError(f"cosign error: {message or f'exit code {proc.returncode}'}")
        return stdout.decode("utf-8", errors="replace")

    async def fetch_predicate(self, image: str, platform: str, predicate_type: str) -> str:
        if predicate_type not in ALLOWED_PREDICATE_TYPES:
            raise InvalidInput(f"Invalid predicate type: {predicate_type}")
        return await self._run([
            "download",
            "attestation",
            "--platform", platform,
            "--predicate-type", predicate_type,
            image,
        ])

    async def _fetch_one(self, image: str, platform: str, kind: SourceKind) -> PredicateResult:
        try:
            raw = await self.fetch_predicate(image, platform, PREDICATE_TYPES[kind])
        except AttestationFetchError as exc:
            logger.info("No %s attestation for %s (%s): %s", kind.value, image, platform, exc)
            return Absent(str(exc))

        statement = first_statement(raw)
        if statement is None:
            return Absent("no decodable envelope")
        return Present(statement)

    async def fetch_all(self, image: str, platform: str) -> Dict[SourceKind, PredicateResult]:
        """Fetch all three predicate types concurrently; each may independently be absent."""
        kinds = list(PREDICATE_TYPES)
        results = await asyncio.gather(*(self._fetch_one(image, platform, k) for k in kinds))
        return dict(zip(kinds, results))

    async def verify(self, image: str) -> Dict[str, object]:
        try:
            output = await self._run([
                "verify-attestation",
                "--type", SPDX_DOCUMENT,
                "--certificate-oidc-issuer", self.settings.verify_oidc_issuer,
                "--certificate-identity", self.settings.verify_identity,
                image,
            ])
        except AttestationFetchError as exc:
            logger.warning("Verification failed for %s: %s", image, exc)
            return {"success": False, "error": str(exc)}
        return {
            "success": True,
            "message": "Attestation verified successfully",
            "output": output,
        }
