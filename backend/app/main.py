import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import endpoints
from app.core.config import get_settings
from app.core.errors import InvalidInput, NoAttestationFound

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="AttestGraph API", description="Container Image Supply Chain Attestation Graph")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API Router
app.include_router(endpoints.router, prefix="/api/v1")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse({"error": "Invalid parameters", "details": details}, status_code=400)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse({"error": "Invalid parameters", "details": exc.details or [str(exc)]}, status_code=400)


@app.exception_handler(NoAttestationFound)
async def no_attestation_handler(request: Request, exc: NoAttestationFound):
    return JSONResponse({"error": "No valid attestations found for the specified image"}, status_code=404)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Graph API error")
    return JSONResponse(
        {
            "error": "Failed to fetch attestations",
            "message": str(exc),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=500,
    )


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.on_event("shutdown")
async def _shutdown():
    if endpoints.get_vulnerability_service.cache_info().currsize:
        await endpoints.get_vulnerability_service().aclose()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
