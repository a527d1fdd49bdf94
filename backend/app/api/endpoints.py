import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.cosign import CosignClient
from app.core.vulnerability_service import VulnerabilityService
from app.engines.graph_engine import GraphEngine
from app.engines.risk_engine import RiskEngine
from app.models.assessment import AnalysisResponse
from app.models.graph import (
    DEFAULT_PLATFORM,
    PLATFORM_PATTERN,
    Absent,
    GraphData,
    GraphMeta,
    GraphRequest,
    GraphResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

graph_engine = GraphEngine()

CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"


# --- Dependencies ---

def get_cosign_client() -> CosignClient:
    return CosignClient(get_settings())


@lru_cache
def get_vulnerability_service() -> VulnerabilityService:
    return VulnerabilityService(get_settings())


def get_risk_engine(
    service: Optional[VulnerabilityService] = Depends(get_vulnerability_service),
) -> RiskEngine:
    return RiskEngine(service)


def graph_request(
    image: str = Query(..., min_length=1, max_length=500),
    platform: str = Query(DEFAULT_PLATFORM, pattern=PLATFORM_PATTERN),
) -> GraphRequest:
    return GraphRequest(image=image, platform=platform)


async def fetch_graph(req: GraphRequest, cosign: CosignClient) -> GraphData:
    """Fetch the three predicates concurrently and assemble whatever came back."""
    logger.info("Fetching attestations for %s (%s)", req.image, req.platform)
    results = await cosign.fetch_all(req.image, req.platform)

    missing = [kind.value for kind, result in results.items() if isinstance(result, Absent)]
    if missing:
        logger.info("Partial attestation set for %s: missing %s", req.image, ", ".join(missing))

    return graph_engine.build_from_results(req.image, results)


# --- Endpoints ---

@router.get("/graph", response_model=GraphResponse)
async def get_attestation_graph(
    response: Response,
    req: GraphRequest = Depends(graph_request),
    cosign: CosignClient = Depends(get_cosign_client),
):
    """Attestation graph for one image, plus request metadata."""
    graph = await fetch_graph(req, cosign)

    response.headers["Cache-Control"] = CACHE_CONTROL
    return GraphResponse(
        root=graph.root,
        nodes=graph.nodes,
        edges=graph.edges,
        raw=graph.raw,
        meta=GraphMeta(
            image=req.image,
            platform=req.platform,
            timestamp=datetime.now(timezone.utc),
            attestation_counts=GraphEngine.attestation_counts(graph),
        ),
    )


@router.get("/analyze", response_model=AnalysisResponse)
async def analyze_image(
    req: GraphRequest = Depends(graph_request),
    cosign: CosignClient = Depends(get_cosign_client),
    risk_engine: RiskEngine = Depends(get_risk_engine),
):
    """
    Graph plus whole-graph security assessment.

    Per-node assessments are included so a client can show details for
    any node without another round trip.
    """
    graph = await fetch_graph(req, cosign)
    assessment = await risk_engine.assess_graph(graph)
    return AnalysisResponse(
        graph=graph,
        assessment=assessment,
        node_assessments=risk_engine.assess_nodes(graph),
    )


@router.post("/verify")
async def verify_attestation(req: GraphRequest, cosign: CosignClient = Depends(get_cosign_client)):
    """Delegate signature verification of the SBOM attestation to cosign."""
    result = await cosign.verify(req.image)
    if not result["success"]:
        return JSONResponse(content=result, status_code=500)
    return result
