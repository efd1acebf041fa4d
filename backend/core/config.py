from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "SalesCentri Lead Capture API"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "production"
    DEBUG: bool = False

    # Security settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # OTP settings
    OTP_LENGTH: int = 6
    OTP_EXPIRY_MINUTES: int = 5
    OTP_EMAIL_EXPIRY_MINUTES: int = 5
    OTP_MAX_VERIFY_ATTEMPTS: int = 3
    OTP_VERIFICATION_BACKEND: str = "token"  # "token" (stateless) or "store"
    OTP_SINGLE_USE: bool = True

    # Rate limiting
    RATE_LIMIT_MAX_REQUESTS: int = 3
    RATE_LIMIT_WINDOW_MINUTES: int = 15
    VERIFY_RATE_LIMIT_MAX_REQUESTS: int = 10
    VERIFY_RATE_LIMIT_WINDOW_MINUTES: int = 15

    # reCAPTCHA
    RECAPTCHA_SECRET_KEY: Optional[str] = None
    RECAPTCHA_VERIFY_URL: str = "https://www.google.com/recaptcha/api/siteverify"
    RECAPTCHA_MIN_SCORE: float = 0.5
    RECAPTCHA_FAIL_OPEN: bool = True

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "https://salescentri.com",
        "https://www.salescentri.com",
    ]

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7

    # SMTP / Email settings
    SMTP_HOST: str = "smtp.office365.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: str = "SalesCentri"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 15
    SMTP_DEBUG: bool = False

    # Privacy notice identity
    PRIVACY_LEGAL_ENTITY_NAME: str = "Sales Centri AI LLC"
    PRIVACY_PRIMARY_ADDRESS: str = (
        "Sales Centri AI LLC\n1309 Coffeen Avenue, STE 1200\nSheridan, Wyoming 82801\nUnited States"
    )
    PRIVACY_REGISTERED_ADDRESS: str = (
        "Sales Centri AI LLC\n1209 Orange Street,\nWilmington, Delaware 19801\nCounty of New Castle\nUnited States"
    )
    PRIVACY_HOSTING_REGIONS: str = "United States (primary), European Union (replica)"
    PRIVACY_UNSUBSCRIBE_LINK: str = "https://salescentri.com/privacy/unsubscribe"
    PRIVACY_BRAND_NAME: str = "SalesCentri"
    PRIVACY_LOGO_URL: str = "https://salescentri.com/saleslogo.png"
    PRIVACY_SITE_URL: str = "https://salescentri.com"
    PRIVACY_CENTER_URL: str = "https://salescentri.com/privacy/management"
    PRIVACY_SUPPORT_EMAIL: str = "privacy@salescentri.com"
    PRIVACY_FROM_EMAIL: str = "noreply@salescentri.com"
    PRIVACY_NOTIFY_EMAIL: str = "no-reply@salescentri.com"

    # MongoDB (optional, shared state across instances)
    USE_MONGO: bool = False
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "salescentri"

    @property
    def is_development(self) -> bool:
        return (self.ENVIRONMENT or "").lower() == "development"

    class Config:
        env_file = ".env"
        case_sensitive = True

# Create settings instance
settings = Settings()

# Validate required settings
if not settings.SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

if settings.OTP_VERIFICATION_BACKEND not in ("token", "store"):
    raise ValueError("OTP_VERIFICATION_BACKEND must be 'token' or 'store'")
