import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

import httpx

from app.core.config import Settings, get_settings
from app.core.errors import ProviderUnavailable
from app.models.assessment import VulnerabilitySummary
from app.models.graph import GraphData, NodeType

logger = logging.getLogger(__name__)

MAX_RESPONSE_SIZE = 10 * 1024 * 1024

# OSV database_specific.severity -> summary bucket
SEVERITY_BUCKETS = {
    "CRITICAL": "critical",
    "HIGH": "high",
    "MODERATE": "medium",
    "MEDIUM": "medium",
    "LOW": "low",
}


def extract_purls(sbom_predicate: Any, limit: int) -> List[str]:
    """Collect unique package URLs from an SPDX document, in document order."""
    if not isinstance(sbom_predicate, dict):
        return []
    purls: List[str] = []
    seen: Set[str] = set()
    for package in sbom_predicate.get("packages") or []:
        if not isinstance(package, dict):
            continue
        for ref in package.get("externalRefs") or []:
            if not isinstance(ref, dict) or ref.get("referenceType") != "purl":
                continue
            locator = ref.get("referenceLocator")
            if locator and locator not in seen:
                seen.add(locator)
                purls.append(locator)
                if len(purls) >= limit:
                    return purls
    return purls


def classify(vuln: Dict[str, Any]) -> str:
    database_specific = vuln.get("database_specific")
    if not isinstance(database_specific, dict):
        return "medium"
    severity = database_specific.get("severity")
    return SEVERITY_BUCKETS.get(str(severity).upper(), "medium")


def summarize(vulns: Dict[str, str]) -> VulnerabilitySummary:
    """Build a summary from a vuln-id -> bucket mapping."""
    counts = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    for bucket in vulns.values():
        counts[bucket] += 1

    risk = min(100, counts["critical"] * 25 + counts["high"] * 10 + counts["medium"] * 3 + counts["low"])

    actions = []
    if counts["critical"]:
        actions.append(f"Immediately patch {counts['critical']} critical vulnerabilities in image dependencies.")
    if counts["high"]:
        actions.append(f"Prioritize remediation of {counts['high']} high-severity vulnerabilities.")
    if counts["medium"]:
        actions.append(f"Plan updates for {counts['medium']} medium-severity vulnerabilities.")

    return VulnerabilitySummary(
        critical_count=counts["critical"],
        high_count=counts["high"],
        medium_count=counts["medium"],
        low_count=counts["low"],
        total_vulnerabilities=len(vulns),
        overall_risk_score=risk,
        recommended_actions=actions,
    )


class VulnerabilityService:
    """
    Looks up SBOM packages in OSV.

    Responses are streamed in chunks and abandoned past MAX_RESPONSE_SIZE
    so one huge answer cannot exhaust memory.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            timeout=self.settings.osv_timeout,
            limits=httpx.Limits(max_connections=60, max_keepalive_connections=20),
        )

    async def aclose(self):
        await self._client.aclose()

    async def query_purl(self, purl: str) -> List[Dict[str, Any]]:
        body = {"package": {"purl": purl}}
        try:
            async with self._client.stream("POST", self.settings.osv_api_url, json=body) as response:
                if response.status_code != 200:
                    raise ProviderUnavailable(f"OSV returned {response.status_code} for {purl}")

                data_buffer = []
                total_size = 0
                async for chunk in response.aiter_text():
                    total_size += len(chunk)
                    if total_size > MAX_RESPONSE_SIZE:
                        raise ProviderUnavailable(f"OSV response for {purl} exceeded {MAX_RESPONSE_SIZE} bytes")
                    data_buffer.append(chunk)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"OSV query failed for {purl}: {exc}") from exc

        try:
            data = json.loads("".join(data_buffer))
        except json.JSONDecodeError as exc:
            raise ProviderUnavailable(f"OSV returned invalid JSON for {purl}") from exc
        if not isinstance(data, dict):
            raise ProviderUnavailable(f"OSV returned an unexpected document for {purl}")
        vulns = data.get("vulns") or []
        if not isinstance(vulns, list):
            raise ProviderUnavailable(f"OSV returned malformed vulns for {purl}")
        return [v for v in vulns if isinstance(v, dict)]

    async def assess(self, graph: GraphData) -> VulnerabilitySummary:
        if not self.settings.vulnerability_lookup_enabled:
            raise ProviderUnavailable("vulnerability lookup disabled")

        sbom = next((n for n in graph.nodes if n.type == NodeType.SBOM_DOCUMENT), None)
        if sbom is None:
            raise ProviderUnavailable("graph has no SBOM to scan")

        purls = extract_purls(sbom.metadata, self.settings.osv_max_packages)
        semaphore = asyncio.Semaphore(self.settings.osv_concurrency)

        async def bounded(purl: str) -> List[Dict[str, Any]]:
            async with semaphore:
                return await self.query_purl(purl)

        results = await asyncio.gather(*(bounded(p) for p in purls))

        vulns: Dict[str, str] = {}
        for package_vulns in results:
            for vuln in package_vulns:
                vuln_id = vuln.get("id")
                if isinstance(vuln_id, str) and vuln_id and vuln_id not in vulns:
                    vulns[vuln_id] = classify(vuln)

        logger.info("OSV lookup: %d packages, %d vulnerabilities", len(purls), len(vulns))
        return summarize(vulns)
