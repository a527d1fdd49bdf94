import re
from typing import Any, Dict, List, Optional

import networkx as nx

from app.core.errors import GraphConstructionError, NoAttestationFound
from app.models.graph import (
    Absent,
    Edge,
    GraphData,
    Node,
    NodeType,
    PredicateResult,
    Present,
    SourceKind,
)

SOURCE_REPO_PATTERN = re.compile(r"^git(\+|:|@)|^https?://(github|gitlab|bitbucket)")

PROVENANCE_ID = "att-slsa"
SBOM_ID = "att-sbom"
BUILD_CONFIG_ID = "att-apko"


def _statement(result: Optional[PredicateResult]) -> Optional[Dict[str, Any]]:
    if isinstance(result, Present) and isinstance(result.statement, dict):
        return result.statement
    return None


def _predicate(statement: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if statement is None:
        return None
    predicate = statement.get("predicate")
    # An empty predicate object still counts as present.
    return predicate if isinstance(predicate, dict) else None


def subject_digest(statement: Optional[Dict[str, Any]]) -> Optional[str]:
    """sha256 of the first subject of an in-toto statement, if any."""
    if not statement:
        return None
    subjects = statement.get("subject")
    if not isinstance(subjects, list) or not subjects or not isinstance(subjects[0], dict):
        return None
    digest = subjects[0].get("digest") or {}
    return digest.get("sha256") if isinstance(digest, dict) else None


def classify_material(uri: Optional[str]) -> NodeType:
    if SOURCE_REPO_PATTERN.search(uri or ""):
        return NodeType.SOURCE_COMMIT
    return NodeType.EXTERNAL_REFERENCE


class GraphEngine:
    """Assembles the attestation graph for one image from its decoded predicates."""

    def build_graph(
        self,
        image: str,
        provenance: Optional[PredicateResult] = None,
        sbom: Optional[PredicateResult] = None,
        build_config: Optional[PredicateResult] = None,
    ) -> GraphData:
        slsa = _statement(provenance)
        spdx = _statement(sbom)
        apko = _statement(build_config)

        digest = subject_digest(slsa) or subject_digest(spdx)
        if not digest:
            raise NoAttestationFound("No valid attestations found for the specified image")

        nodes: List[Node] = []
        edges: List[Edge] = []

        root_id = f"sha256:{digest}"
        nodes.append(Node(id=root_id, type=NodeType.IMAGE, name=image, digest=root_id))

        slsa_predicate = _predicate(slsa)
        if slsa_predicate is not None:
            nodes.append(Node(
                id=PROVENANCE_ID,
                type=NodeType.PROVENANCE,
                name="SLSA v1 Provenance",
                metadata=slsa_predicate,
            ))
            edges.append(Edge(id="e-root-slsa", source=root_id, target=PROVENANCE_ID, label="attests"))

            # Positional ids: reordered materials get different ids on refetch.
            materials = slsa_predicate.get("materials")
            if not isinstance(materials, list):
                materials = []
            for index, material in enumerate(materials):
                material = material if isinstance(material, dict) else {}
                material_id = f"mat-{index}"
                uri = material.get("uri") if isinstance(material.get("uri"), str) else None
                digest_map = material.get("digest")
                sha = digest_map.get("sha256") if isinstance(digest_map, dict) else None
                nodes.append(Node(
                    id=material_id,
                    type=classify_material(uri),
                    name=uri or f"Material {index + 1}",
                    uri=uri,
                    digest=f"sha256:{sha}" if sha else None,
                    metadata=material,
                ))
                edges.append(Edge(
                    id=f"e-slsa-{index}", source=PROVENANCE_ID, target=material_id, label="built from"
                ))

        spdx_predicate = _predicate(spdx)
        if spdx_predicate is not None:
            nodes.append(Node(id=SBOM_ID, type=NodeType.SBOM_DOCUMENT, name="SBOM (SPDX)", metadata=spdx_predicate))
            edges.append(Edge(id="e-root-sbom", source=root_id, target=SBOM_ID, label="describes"))

        apko_predicate = _predicate(apko)
        if apko_predicate is not None:
            nodes.append(Node(
                id=BUILD_CONFIG_ID, type=NodeType.BUILD_CONFIG, name="APKO Configuration", metadata=apko_predicate
            ))
            edges.append(Edge(id="e-root-apko", source=root_id, target=BUILD_CONFIG_ID, label="configured by"))

        graph = GraphData(
            root=root_id,
            nodes=nodes,
            edges=edges,
            raw={
                SourceKind.PROVENANCE.value: slsa,
                SourceKind.SBOM.value: spdx,
                SourceKind.BUILD_CONFIG.value: apko,
            },
        )
        self.validate(graph)
        return graph

    def build_from_results(self, image: str, results: Dict[SourceKind, PredicateResult]) -> GraphData:
        return self.build_graph(
            image,
            provenance=results.get(SourceKind.PROVENANCE, Absent()),
            sbom=results.get(SourceKind.SBOM, Absent()),
            build_config=results.get(SourceKind.BUILD_CONFIG, Absent()),
        )

    @staticmethod
    def to_digraph(graph: GraphData) -> nx.DiGraph:
        G = nx.DiGraph()
        for node in graph.nodes:
            G.add_node(node.id, type=node.type)
        for edge in graph.edges:
            G.add_edge(edge.source, edge.target, id=edge.id, label=edge.label)
        return G

    def validate(self, graph: GraphData):
        """Check for dangling edges and nodes unreachable from the root."""
        node_ids = [n.id for n in graph.nodes]
        if len(set(node_ids)) != len(node_ids):
            raise GraphConstructionError("duplicate node ids")

        known = set(node_ids)
        for edge in graph.edges:
            if edge.source not in known or edge.target not in known:
                raise GraphConstructionError(f"dangling edge {edge.id}: {edge.source} -> {edge.target}")

        G = self.to_digraph(graph)
        reachable = nx.descendants(G, graph.root) | {graph.root}
        orphans = known - reachable
        if orphans:
            raise GraphConstructionError(f"nodes unreachable from root: {sorted(orphans)}")

    @staticmethod
    def attestation_counts(graph: GraphData) -> Dict[str, int]:
        return {kind: 1 if statement else 0 for kind, statement in graph.raw.items()}
