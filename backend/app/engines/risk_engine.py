import logging
import math
from typing import Dict, List, Optional

from app.core.errors import ProviderUnavailable
from app.core.vulnerability_service import VulnerabilityService
from app.engines.node_risk import assess_node
from app.models.assessment import (
    IssueType,
    RiskLevel,
    SecurityAssessment,
    SecurityIssue,
    Severity,
    TrustLevel,
    VulnerabilitySummary,
)
from app.models.graph import GraphData, NodeType

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 8

ISSUE_ADVICE = {
    IssueType.UNSIGNED_COMPONENT: "Sign all software artifacts and verify signatures before deployment.",
    IssueType.VULNERABILITY: "Scan for vulnerabilities regularly and prioritize fixing critical/high severity issues.",
    IssueType.OUTDATED_DEPENDENCY: "Keep dependencies updated and monitor for security updates.",
}


def half_up(value: float) -> int:
    """Round halves towards +infinity (2.5 -> 3), unlike the builtin round()."""
    return int(math.floor(value + 0.5))


def _count(issues: List[SecurityIssue], severity: Severity) -> int:
    return sum(1 for i in issues if i.severity == severity)


def determine_trust_level(
    issues: List[SecurityIssue],
    has_provenance: bool,
    has_sbom: bool,
    summary: Optional[VulnerabilitySummary] = None,
) -> TrustLevel:
    critical_issues = _count(issues, Severity.CRITICAL)
    high_issues = _count(issues, Severity.HIGH)

    if summary and summary.critical_count > 0:
        return TrustLevel.UNTRUSTED
    if critical_issues > 0:
        return TrustLevel.UNTRUSTED
    if summary and summary.high_count > 3:
        return TrustLevel.UNTRUSTED
    if high_issues > 2:
        return TrustLevel.UNTRUSTED

    if not has_provenance and not has_sbom:
        return TrustLevel.UNTRUSTED

    if has_provenance and has_sbom and high_issues == 0 and (
        summary is None or (summary.critical_count == 0 and summary.high_count == 0)
    ):
        return TrustLevel.VERIFIED

    if (has_provenance or has_sbom) and high_issues <= 1 and (
        summary is None or summary.critical_count == 0
    ):
        return TrustLevel.PARTIAL

    return TrustLevel.UNKNOWN


def determine_risk_level(
    issues: List[SecurityIssue],
    score: float,
    summary: Optional[VulnerabilitySummary] = None,
) -> RiskLevel:
    critical_issues = _count(issues, Severity.CRITICAL)
    high_issues = _count(issues, Severity.HIGH)

    if critical_issues > 0 or score < 30 or (summary and summary.critical_count > 0):
        return RiskLevel.CRITICAL

    if high_issues > 1 or score < 50 or (
        summary and (summary.high_count > 2 or summary.overall_risk_score > 75)
    ):
        return RiskLevel.HIGH

    if high_issues > 0 or score < 80 or (
        summary and (summary.high_count > 0 or summary.medium_count > 5)
    ):
        return RiskLevel.MEDIUM

    return RiskLevel.LOW


def generate_recommendations(
    issues: List[SecurityIssue],
    graph: GraphData,
    summary: Optional[VulnerabilitySummary] = None,
) -> List[str]:
    recommendations: List[str] = []

    # Provider advice goes first.
    if summary and summary.recommended_actions:
        recommendations.extend(summary.recommended_actions)

    if not graph.has_type(NodeType.PROVENANCE):
        recommendations.append("Implement SLSA provenance in your build process to verify software origins.")
    if not graph.has_type(NodeType.SBOM_DOCUMENT):
        recommendations.append("Generate and attach SBOMs to track all software components and dependencies.")

    issue_types = {i.type for i in issues}
    if IssueType.UNSIGNED_COMPONENT in issue_types:
        recommendations.append(ISSUE_ADVICE[IssueType.UNSIGNED_COMPONENT])
    if IssueType.VULNERABILITY in issue_types and summary is None:
        recommendations.append(ISSUE_ADVICE[IssueType.VULNERABILITY])
    if IssueType.OUTDATED_DEPENDENCY in issue_types:
        recommendations.append(ISSUE_ADVICE[IssueType.OUTDATED_DEPENDENCY])

    if summary and summary.total_vulnerabilities > 0:
        recommendations.append("Implement automated vulnerability scanning in your CI/CD pipeline.")
        recommendations.append("Set up security alerts for new vulnerabilities in your dependencies.")

    if not recommendations:
        recommendations.append("Continue following security best practices and monitor for new vulnerabilities.")
        recommendations.append("Consider implementing additional security measures like dependency pinning.")

    return recommendations[:MAX_RECOMMENDATIONS]


def compute_assessment(
    graph: GraphData, summary: Optional[VulnerabilitySummary] = None
) -> SecurityAssessment:
    """
    Score a finished graph.

    Deductions overlap: a weakness picked up by the coverage checks can be
    charged again through the per-node fold, and the fold pulls the score
    towards the worst node rather than averaging.
    """
    issues: List[SecurityIssue] = []
    total = 100.0

    has_provenance = graph.has_type(NodeType.PROVENANCE)
    has_sbom = graph.has_type(NodeType.SBOM_DOCUMENT)

    if not has_provenance:
        issues.append(SecurityIssue(
            type=IssueType.MISSING_ATTESTATION,
            severity=Severity.HIGH,
            description="No SLSA provenance attestation found. This means the build process cannot be verified.",
            component="Build Process",
        ))
        total -= 30

    if not has_sbom:
        issues.append(SecurityIssue(
            type=IssueType.MISSING_ATTESTATION,
            severity=Severity.MEDIUM,
            description="No SBOM (Software Bill of Materials) found. Component inventory is unknown.",
            component="Dependencies",
        ))
        total -= 20

    if summary is not None:
        if summary.critical_count > 0:
            issues.append(SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.CRITICAL,
                description=f"{summary.critical_count} critical vulnerabilities found in dependencies.",
                component="Dependencies",
            ))
            total -= 40
        if summary.high_count > 0:
            issues.append(SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.HIGH,
                description=f"{summary.high_count} high-severity vulnerabilities found in dependencies.",
                component="Dependencies",
            ))
            total -= min(25, summary.high_count * 5)
        if summary.medium_count > 3:
            issues.append(SecurityIssue(
                type=IssueType.VULNERABILITY,
                severity=Severity.MEDIUM,
                description=f"{summary.medium_count} medium-severity vulnerabilities found in dependencies.",
                component="Dependencies",
            ))
            total -= min(15, summary.medium_count * 2)
        total -= half_up(summary.overall_risk_score / 100 * 20)

    # Node order matters here: the fold is order dependent.
    node_count = len(graph.nodes)
    for node in graph.nodes:
        node_assessment = assess_node(node, graph)
        issues.extend(node_assessment.issues)
        total = min(total, total - (100 - node_assessment.score) / node_count)

    trust_level = determine_trust_level(issues, has_provenance, has_sbom, summary)
    risk_level = determine_risk_level(issues, total, summary)

    return SecurityAssessment(
        trust_level=trust_level,
        risk_level=risk_level,
        score=max(0, min(100, half_up(total))),
        issues=issues,
        recommendations=generate_recommendations(issues, graph, summary),
        vulnerability_summary=summary,
    )


class RiskEngine:
    """Whole-graph assessment, optionally enriched by a vulnerability provider."""

    def __init__(self, vulnerability_service: Optional[VulnerabilityService] = None):
        self.vulnerability_service = vulnerability_service

    async def lookup_vulnerabilities(self, graph: GraphData) -> Optional[VulnerabilitySummary]:
        if self.vulnerability_service is None or not graph.has_type(NodeType.SBOM_DOCUMENT):
            return None
        try:
            return await self.vulnerability_service.assess(graph)
        except ProviderUnavailable as exc:
            logger.warning("Failed to assess vulnerabilities: %s", exc)
            return None

    async def assess_graph(self, graph: GraphData) -> SecurityAssessment:
        summary = await self.lookup_vulnerabilities(graph)
        return compute_assessment(graph, summary)

    @staticmethod
    def assess_nodes(graph: GraphData) -> Dict[str, SecurityAssessment]:
        return {node.id: assess_node(node, graph) for node in graph.nodes}
