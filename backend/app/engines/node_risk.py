from typing import Dict, List, Tuple

from app.models.assessment import (
    IssueType,
    RiskLevel,
    SecurityAssessment,
    SecurityIssue,
    Severity,
    TrustLevel,
)
from app.models.graph import GraphData, Node, NodeType

PUBLIC_SOURCE_HOSTS = ("github.com", "gitlab.com")

NODE_RECOMMENDATIONS: Dict[NodeType, List[str]] = {
    NodeType.IMAGE: [
        "Scan container image for vulnerabilities before deployment.",
        "Use minimal base images to reduce attack surface.",
    ],
    NodeType.PROVENANCE: [
        "Verify the build environment and source integrity.",
    ],
    NodeType.SBOM_DOCUMENT: [
        "Review all components for known vulnerabilities.",
        "Ensure all licenses are compatible with your usage.",
    ],
    NodeType.SOURCE_COMMIT: [
        "Verify the commit signature and author identity.",
    ],
}


def score_bands(score: float) -> Tuple[TrustLevel, RiskLevel]:
    # The lowest band pairs "unknown" trust with "critical" risk.
    if score > 80:
        return TrustLevel.VERIFIED, RiskLevel.LOW
    if score > 60:
        return TrustLevel.PARTIAL, RiskLevel.MEDIUM
    if score > 30:
        return TrustLevel.UNTRUSTED, RiskLevel.HIGH
    return TrustLevel.UNKNOWN, RiskLevel.CRITICAL


def _metadata(node: Node) -> dict:
    return node.metadata if isinstance(node.metadata, dict) else {}


def assess_node(node: Node, graph: GraphData) -> SecurityAssessment:
    """Score a single node against the check for its type. Starts at 100."""
    issues: List[SecurityIssue] = []
    score = 100

    if node.type == NodeType.IMAGE:
        if not graph.outgoing(node.id):
            issues.append(SecurityIssue(
                type=IssueType.UNSIGNED_COMPONENT,
                severity=Severity.HIGH,
                description="Container image has no attestations or signatures.",
                component=node.name,
            ))
            score -= 40

    elif node.type == NodeType.PROVENANCE:
        materials = _metadata(node).get("materials")
        if not isinstance(materials, list) or not materials:
            issues.append(SecurityIssue(
                type=IssueType.MISSING_ATTESTATION,
                severity=Severity.MEDIUM,
                description="Provenance attestation lacks detailed material information.",
                component=node.name,
            ))
            score -= 20

    elif node.type == NodeType.SBOM_DOCUMENT:
        # An empty packages list still counts as present.
        if not isinstance(_metadata(node).get("packages"), (list, dict)):
            issues.append(SecurityIssue(
                type=IssueType.MISSING_ATTESTATION,
                severity=Severity.MEDIUM,
                description="SBOM appears incomplete or malformed.",
                component=node.name,
            ))
            score -= 25

    elif node.type == NodeType.SOURCE_COMMIT:
        if node.uri and not any(host in node.uri for host in PUBLIC_SOURCE_HOSTS):
            issues.append(SecurityIssue(
                type=IssueType.UNSIGNED_COMPONENT,
                severity=Severity.LOW,
                description="Source code from unknown or private repository.",
                component=node.name,
            ))
            score -= 10

    trust_level, risk_level = score_bands(score)
    return SecurityAssessment(
        trust_level=trust_level,
        risk_level=risk_level,
        score=max(0, score),
        issues=issues,
        recommendations=list(NODE_RECOMMENDATIONS.get(node.type, [])),
    )
