from pydantic import BaseModel
from typing import Optional

class OtpDebug(BaseModel):
    otp: str

class SendOtpResponse(BaseModel):
    success: bool
    message: str
    expiresAt: int
    signedToken: str
    debug: Optional[OtpDebug] = None

class VerifyOtpResponse(BaseModel):
    success: bool
    message: str

class FailureResponse(BaseModel):
    success: bool = False
    message: str
