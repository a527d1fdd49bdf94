from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.graph import GraphData


class IssueType(str, Enum):
    MISSING_ATTESTATION = "missing_attestation"
    UNSIGNED_COMPONENT = "unsigned_component"
    OUTDATED_DEPENDENCY = "outdated_dependency"
    VULNERABILITY = "vulnerability"
    LICENSE_ISSUE = "license_issue"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrustLevel(str, Enum):
    VERIFIED = "verified"
    PARTIAL = "partial"
    UNTRUSTED = "untrusted"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SecurityIssue(_CamelModel):
    type: IssueType
    severity: Severity
    description: str
    component: Optional[str] = None


class VulnerabilitySummary(_CamelModel):
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    total_vulnerabilities: int = 0
    overall_risk_score: float = Field(default=0.0, ge=0, le=100)
    recommended_actions: List[str] = Field(default_factory=list)


class SecurityAssessment(_CamelModel):
    trust_level: TrustLevel
    risk_level: RiskLevel
    score: int = Field(ge=0, le=100)
    issues: List[SecurityIssue] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    vulnerability_summary: Optional[VulnerabilitySummary] = None


class AnalysisResponse(_CamelModel):
    graph: GraphData
    assessment: SecurityAssessment
    node_assessments: Dict[str, SecurityAssessment]
