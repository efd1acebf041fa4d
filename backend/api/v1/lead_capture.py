from fastapi import APIRouter, Depends, Body
from api.dependencies import get_otp_service
from schemas.lead_capture_schema import SendOtpResponse, VerifyOtpResponse, FailureResponse
from services.otp_service import OtpService
from utils.responses import no_store_json

router = APIRouter(prefix="/api/lead-capture")

@router.post("/send-otp", response_model=SendOtpResponse, responses={400: {"model": FailureResponse}, 429: {"model": FailureResponse}, 500: {"model": FailureResponse}})
async def send_otp(payload: dict = Body(...), otp_service: OtpService = Depends(get_otp_service)):
    return no_store_json(await otp_service.send_otp(
        payload.get("email"),
        payload.get("phone"),
        payload.get("recaptchaToken"),
    ))

@router.post("/verify-otp", response_model=VerifyOtpResponse, responses={400: {"model": FailureResponse}})
async def verify_otp(payload: dict = Body(...), otp_service: OtpService = Depends(get_otp_service)):
    return no_store_json(await otp_service.verify_otp(
        payload.get("email"),
        payload.get("otp"),
        payload.get("signedToken"),
    ))
