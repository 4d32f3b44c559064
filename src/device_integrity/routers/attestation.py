"""
Attestation router
Challenge issuance, key attestation, assertion and Play Integrity endpoints
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..schemas.attestation import (
    AndroidAttestationRequest,
    AssertionRequest,
    AssertionResponse,
    IntegrityTokenRequest,
    KeyRegistrationRequest,
    NonceResponse,
    VerificationResponse,
)
from ..services.attestation.base import AttestationResult
from ..services.attestation.service import IntegrityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Attestation"])

# Malformed client input, reported with its message
BAD_REQUEST_KINDS = {"DecodeError", "MissingField"}


def get_integrity_service(request: Request) -> IntegrityService:
    """Service instance created by the application factory"""
    return request.app.state.integrity_service


def _raise_for_result(result: AttestationResult) -> None:
    """Translate a failed result into an HTTP error. Details stay in the logs."""
    if result.is_valid:
        return
    logger.info(f"Rejected request - Kind: {result.error_kind}, Detail: {result.error_message}")
    if result.error_kind == "RecordNotFound":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No attestation found")
    if result.error_kind == "KeyAlreadyRegistered":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Key tag already registered")
    if result.error_kind in BAD_REQUEST_KINDS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error_message)
    if result.is_error:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail=f"Verification unavailable ({result.error_kind})")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/attest/nonce", response_model=NonceResponse,
            summary="Issue Challenge",
            description="Returns a one-time challenge for the next attestation or assertion.")
def get_nonce(service: IntegrityService = Depends(get_integrity_service)):
    return NonceResponse(nonce=service.issue_challenge())


@router.post("/attest/android/verify", response_model=VerificationResponse,
             summary="Verify Android Key Attestation")
def verify_android_attestation(body: AndroidAttestationRequest,
                               service: IntegrityService = Depends(get_integrity_service)):
    """
    Verify the hardware key attestation chain and register the device key.
    """
    result = service.register_android_key(
        body.hardware_key_tag, body.attestation, body.public_key, body.challenge
    )
    _raise_for_result(result)
    return VerificationResponse(result=result.status.value)


@router.post("/attest/register", response_model=VerificationResponse,
             summary="Register Attested Key")
def register_key(body: KeyRegistrationRequest,
                 service: IntegrityService = Depends(get_integrity_service)):
    result = service.register_key(body.hardware_key_tag, body.public_key, body.platform)
    _raise_for_result(result)
    return VerificationResponse(result=result.status.value)


@router.post("/assertion/verify", response_model=AssertionResponse, response_model_by_alias=True,
             summary="Verify Assertion")
def verify_assertion(body: AssertionRequest,
                     service: IntegrityService = Depends(get_integrity_service)):
    """
    Verify an assertion against the stored key and advance the counter.
    """
    result = service.verify_assertion(
        body.hardware_key_tag,
        body.assertion,
        body.payload.encode("utf-8"),
        body.encoding,
        body.challenge,
    )
    _raise_for_result(result)
    return AssertionResponse(sign_count=result.metadata["sign_count"])


@router.post("/android/integrity-token/verify", response_model=VerificationResponse,
             summary="Verify Play Integrity Token",
             description="The token is decoded by Google; only a yes/no answer is returned.")
def verify_integrity_token(body: IntegrityTokenRequest,
                           service: IntegrityService = Depends(get_integrity_service)):
    result = service.verify_integrity_token(body.integrity_token, body.request_hash)
    _raise_for_result(result)
    return VerificationResponse(result=result.status.value)
