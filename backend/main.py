from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from api.v1 import lead_capture, privacy
from core.config import settings
from core.exceptions import OtpRequestError, PrivacyRequestError
from db.mongodb import get_mongo_db, init_mongo_indexes, close_mongo_client
from services.privacy_service import SAR_INVALID_EMAIL
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.responses import failure_json, error_json

# Configure logging with date-based files and TTL retention
logger = configure_logging("salescentri")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG
)

@app.exception_handler(OtpRequestError)
async def otp_request_error_handler(request: Request, exc: OtpRequestError):
    return failure_json(exc.detail, exc.status_code, exc.headers)

@app.exception_handler(PrivacyRequestError)
async def privacy_request_error_handler(request: Request, exc: PrivacyRequestError):
    return error_json(exc.detail, exc.status_code, exc.headers)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed body at {request.url.path}")
    if request.url.path.startswith(privacy.router.prefix):
        return error_json(SAR_INVALID_EMAIL, 400)
    return failure_json("Invalid request body", 400)

# Global exception handler to ensure 500s for unexpected errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error at {request.url.path}: {exc}")
    return failure_json("Internal server error", 500)

app.add_middleware(GZipMiddleware, minimum_size=500)

# Add logging context middleware to capture client address and API path
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(lead_capture.router, tags=["Lead Capture"])
app.include_router(privacy.router, tags=["Privacy"])

@app.on_event("startup")
async def startup_db_client():
    """Ensure shared-state indexes when Mongo is enabled"""
    if settings.USE_MONGO:
        if await init_mongo_indexes():
            logger.info("Mongo indexes ensured")
        else:
            logger.warning("Mongo unavailable; rate limits and OTP state stay in process memory")
    else:
        logger.info("USE_MONGO=false; using in-process rate limit and OTP state")
    logger.info(f"Application startup complete ({settings.ENVIRONMENT}, OTP backend={settings.OTP_VERIFICATION_BACKEND})")

@app.on_event("shutdown")
async def shutdown_db_client():
    close_mongo_client()
    logger.info("Application shutdown complete")

@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}

@app.get("/health")
async def health_check():
    if not settings.USE_MONGO:
        return {"status": "healthy", "storage": "memory"}
    db = get_mongo_db()
    if db is None:
        return {"status": "degraded", "storage": "mongo_unconfigured"}
    try:
        await db.command({"ping": 1})
        return {"status": "healthy", "storage": "mongo_connected"}
    except Exception as e:
        logger.warning(f"Health Mongo check failed: {e}")
        return {"status": "degraded", "storage": "mongo_unavailable"}
