from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PLATFORM_PATTERN = r"^linux/(amd64|arm64|386|arm/v[67]|ppc64le|s390x)$"
DEFAULT_PLATFORM = "linux/amd64"


class NodeType(str, Enum):
    IMAGE = "IMAGE"
    PROVENANCE = "PROVENANCE"
    SBOM_DOCUMENT = "SBOM_DOCUMENT"
    BUILD_CONFIG = "BUILD_CONFIG"
    SOURCE_COMMIT = "SOURCE_COMMIT"
    EXTERNAL_REFERENCE = "EXTERNAL_REFERENCE"
    GENERIC_ATTESTATION = "GENERIC_ATTESTATION"


class SourceKind(str, Enum):
    """The three attestation sources a graph is assembled from."""

    PROVENANCE = "provenance"
    SBOM = "sbom"
    BUILD_CONFIG = "build_config"


class Node(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: NodeType
    name: str
    uri: Optional[str] = None
    digest: Optional[str] = None
    metadata: Optional[Any] = None  # raw predicate fragment


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source: str = Field(alias="from")
    target: str = Field(alias="to")
    label: Optional[str] = None  # e.g. "attests", "built from"


class GraphData(BaseModel):
    model_config = ConfigDict(frozen=True)

    root: str
    nodes: List[Node]
    edges: List[Edge]
    raw: Dict[str, Optional[Any]]

    def get_node(self, node_id: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def has_type(self, node_type: NodeType) -> bool:
        return any(n.type == node_type for n in self.nodes)

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]


class GraphMeta(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    image: str
    platform: str
    timestamp: datetime
    attestation_counts: Dict[str, int]


class GraphResponse(GraphData):
    meta: GraphMeta


class GraphRequest(BaseModel):
    """Validated image/platform pair. Built before any external call is made."""

    image: str = Field(min_length=1, max_length=500)
    platform: str = Field(default=DEFAULT_PLATFORM, pattern=PLATFORM_PATTERN)


# --- Per-source fetch outcome ---
# Each of the three fetches resolves to exactly one of these.

@dataclass(frozen=True)
class Present:
    statement: Dict[str, Any]


@dataclass(frozen=True)
class Absent:
    reason: str = "not fetched"


PredicateResult = Union[Present, Absent]
