from fastapi import APIRouter, Depends, Body
from api.dependencies import get_mailer, get_privacy_identity
from schemas.privacy_schema import PrivacyRequestResponse, ErrorResponse
from services.privacy_service import (
    PrivacyIdentity,
    OPT_OUT_REQUEST,
    ERASURE_REQUEST,
    submit_access_request,
    submit_privacy_request,
)
from utils.email import SmtpMailer
from utils.responses import no_store_json

router = APIRouter(prefix="/api/privacy")

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}

@router.post("/sar", response_model=PrivacyRequestResponse, responses=ERROR_RESPONSES)
async def subject_access_request(
    payload: dict = Body(...),
    mailer: SmtpMailer = Depends(get_mailer),
    identity: PrivacyIdentity = Depends(get_privacy_identity),
):
    return no_store_json(await submit_access_request(payload.get("email"), mailer, identity))

@router.post("/optout", response_model=PrivacyRequestResponse, responses=ERROR_RESPONSES)
async def opt_out_request(
    payload: dict = Body(...),
    mailer: SmtpMailer = Depends(get_mailer),
    identity: PrivacyIdentity = Depends(get_privacy_identity),
):
    return no_store_json(await submit_privacy_request(OPT_OUT_REQUEST, payload.get("email"), mailer, identity))

@router.post("/delete", response_model=PrivacyRequestResponse, responses=ERROR_RESPONSES)
async def erasure_request(
    payload: dict = Body(...),
    mailer: SmtpMailer = Depends(get_mailer),
    identity: PrivacyIdentity = Depends(get_privacy_identity),
):
    return no_store_json(await submit_privacy_request(ERASURE_REQUEST, payload.get("email"), mailer, identity))
