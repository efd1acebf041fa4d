from fastapi import HTTPException


class OtpRequestError(HTTPException):
    """Lead-capture failure, rendered as {"success": false, "message": detail}"""


class PrivacyRequestError(HTTPException):
    """Privacy endpoint failure, rendered as {"error": detail}"""
