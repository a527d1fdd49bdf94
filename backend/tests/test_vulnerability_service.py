import asyncio
import json

import httpx
import pytest

from app.core.config import Settings
from app.core.errors import ProviderUnavailable
from app.core.vulnerability_service import VulnerabilityService, classify, extract_purls, summarize
from app.engines.graph_engine import GraphEngine
from app.models.graph import Present

from factories import IMAGE, provenance_statement, sbom_statement

OSV_URL = "https://api.osv.dev/v1/query"

PACKAGES = [
    {"name": "glibc", "externalRefs": [
        {"referenceType": "purl", "referenceLocator": "pkg:apk/wolfi/glibc@2.38-r1"},
        {"referenceType": "cpe23Type", "referenceLocator": "cpe:2.3:a:gnu:glibc:2.38"},
    ]},
    {"name": "openssl", "externalRefs": [
        {"referenceType": "purl", "referenceLocator": "pkg:apk/wolfi/openssl@3.1.4-r0"},
    ]},
    {"name": "glibc-locale", "externalRefs": [
        {"referenceType": "purl", "referenceLocator": "pkg:apk/wolfi/glibc@2.38-r1"},
    ]},
    {"name": "no-refs"},
]

OSV_RESPONSES = {
    "pkg:apk/wolfi/glibc@2.38-r1": {"vulns": [
        {"id": "CVE-2023-4911", "database_specific": {"severity": "HIGH"}},
        {"id": "CVE-2023-0001", "database_specific": {"severity": "CRITICAL"}},
    ]},
    "pkg:apk/wolfi/openssl@3.1.4-r0": {"vulns": [
        {"id": "CVE-2023-0001", "database_specific": {"severity": "CRITICAL"}},
        {"id": "CVE-2023-5678", "database_specific": {"severity": "MODERATE"}},
        {"id": "CVE-2024-0727"},
        {"id": "GHSA-xxxx", "database_specific": {"severity": "LOW"}},
    ]},
}


def _graph(packages=PACKAGES):
    return GraphEngine().build_graph(IMAGE, Present(provenance_statement()), Present(sbom_statement(packages=packages)))


def _service(handler, **overrides) -> VulnerabilityService:
    settings = Settings(osv_api_url=OSV_URL, **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VulnerabilityService(settings, client=client)


def osv_handler(request: httpx.Request) -> httpx.Response:
    purl = json.loads(request.content)["package"]["purl"]
    return httpx.Response(200, json=OSV_RESPONSES.get(purl, {}))


def test_extract_purls_dedupes_and_limits():
    predicate = sbom_statement(packages=PACKAGES)["predicate"]

    assert extract_purls(predicate, 50) == [
        "pkg:apk/wolfi/glibc@2.38-r1",
        "pkg:apk/wolfi/openssl@3.1.4-r0",
    ]
    assert extract_purls(predicate, 1) == ["pkg:apk/wolfi/glibc@2.38-r1"]
    assert extract_purls(None, 50) == []


def test_classify_defaults_to_medium():
    assert classify({"database_specific": {"severity": "CRITICAL"}}) == "critical"
    assert classify({"database_specific": {"severity": "moderate"}}) == "medium"
    assert classify({}) == "medium"


def test_summarize_counts_and_actions():
    summary = summarize({"a": "critical", "b": "high", "c": "high", "d": "low"})

    assert (summary.critical_count, summary.high_count, summary.medium_count, summary.low_count) == (1, 2, 0, 1)
    assert summary.total_vulnerabilities == 4
    assert summary.overall_risk_score == 46
    assert len(summary.recommended_actions) == 2
    assert summary.recommended_actions[0].startswith("Immediately patch 1 critical")


def test_summarize_caps_risk_at_100():
    summary = summarize({str(i): "critical" for i in range(5)})
    assert summary.overall_risk_score == 100


def test_assess_queries_osv_per_unique_package():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content)["package"]["purl"])
        return osv_handler(request)

    summary = asyncio.run(_service(handler).assess(_graph()))

    assert sorted(seen) == ["pkg:apk/wolfi/glibc@2.38-r1", "pkg:apk/wolfi/openssl@3.1.4-r0"]
    assert summary.critical_count == 1
    assert summary.high_count == 1
    assert summary.medium_count == 2
    assert summary.low_count == 1
    assert summary.total_vulnerabilities == 5


def test_assess_with_no_packages_is_clean():
    summary = asyncio.run(_service(osv_handler).assess(_graph(packages=[])))

    assert summary.total_vulnerabilities == 0
    assert summary.overall_risk_score == 0
    assert summary.recommended_actions == []


def test_osv_error_status_is_provider_unavailable():
    def handler(request):
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ProviderUnavailable):
        asyncio.run(_service(handler).assess(_graph()))


def test_transport_error_is_provider_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderUnavailable):
        asyncio.run(_service(handler).assess(_graph()))


def test_disabled_lookup_is_provider_unavailable():
    service = _service(osv_handler, vulnerability_lookup_enabled=False)
    with pytest.raises(ProviderUnavailable):
        asyncio.run(service.assess(_graph()))


def test_graph_without_sbom_is_provider_unavailable():
    graph = GraphEngine().build_graph(IMAGE, Present(provenance_statement()))
    with pytest.raises(ProviderUnavailable):
        asyncio.run(_service(osv_handler).assess(graph))


@pytest.mark.parametrize("document", [
    [{"id": "CVE-2023-0001"}],
    {"vulns": {"id": "CVE-2023-0001"}},
    "not an object",
])
def test_unexpected_osv_document_is_provider_unavailable(document):
    def handler(request):
        return httpx.Response(200, json=document)

    with pytest.raises(ProviderUnavailable):
        asyncio.run(_service(handler).assess(_graph()))


def test_malformed_vuln_entries_are_skipped():
    def handler(request):
        return httpx.Response(200, json={"vulns": [
            "CVE-2023-9999",
            {"id": "CVE-2023-0002", "database_specific": ["HIGH"]},
            {"id": "CVE-2023-0003", "database_specific": {"severity": "HIGH"}},
        ]})

    summary = asyncio.run(_service(handler).assess(_graph()))

    assert summary.total_vulnerabilities == 2
    assert summary.high_count == 1
    assert summary.medium_count == 1


def test_classify_tolerates_non_mapping_database_specific():
    assert classify({"database_specific": "HIGH"}) == "medium"
