from fastapi.responses import JSONResponse

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

def no_store_json(data, status_code: int = 200, headers: dict = None):
    """Return JSONResponse with no-store caching headers."""
    merged = dict(NO_STORE_HEADERS)
    if headers:
        merged.update(headers)
    return JSONResponse(content=data, status_code=status_code, headers=merged)

def failure_json(message: str, status_code: int, headers: dict = None):
    """Lead-capture style error body"""
    return no_store_json({"success": False, "message": message}, status_code=status_code, headers=headers)

def error_json(message: str, status_code: int, headers: dict = None):
    """Privacy style error body"""
    return no_store_json({"error": message}, status_code=status_code, headers=headers)
