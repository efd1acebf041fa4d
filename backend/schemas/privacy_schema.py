from pydantic import BaseModel

class PrivacyRequestResponse(BaseModel):
    success: bool
    message: str

class ErrorResponse(BaseModel):
    error: str
