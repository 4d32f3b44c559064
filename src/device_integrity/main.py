"""
Device integrity verification backend
FastAPI application exposing hardware attestation and assertion checks
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException

from .routers import attestation
from .services.attestation.config import AttestationConfig
from .services.attestation.service import IntegrityService
from .utils.errors import error_handler

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config: Optional[AttestationConfig] = None,
               service: Optional[IntegrityService] = None) -> FastAPI:
    """Build the application. Tests pass their own config or service."""
    config = config or AttestationConfig()
    for issue in config.validate_config():
        logger.warning(f"Configuration issue: {issue}")
    config.log_config_summary()

    app = FastAPI(
        title="Device Integrity Verification",
        description="Verifies Android key attestation chains, Play Integrity tokens "
                    "and hardware key assertions.",
        version="1.0.0",
        tags_metadata=[
            {"name": "Attestation", "description": "Attestation and assertion verification"},
            {"name": "Health", "description": "Health and metrics"},
        ],
    )
    app.state.integrity_service = service or IntegrityService(config)
    app.add_exception_handler(HTTPException, error_handler)
    app.include_router(attestation.router)

    @app.get("/health", tags=["Health"])
    def health_check():
        """Health check with verification metrics"""
        return {
            "status": "ok",
            "service": "device-integrity",
            "metrics": app.state.integrity_service.get_metrics(),
        }

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=5000)
