import secrets

from fastapi import Header, HTTPException, Request


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Guard for every admin and search endpoint; /health stays open.

    Raises:
        HTTPException: 401 if the X-API-Key header is missing or wrong.
    """
    expected_key = request.app.state.helper_config.get_string_val("APP_API_KEY")
    if not x_api_key or not secrets.compare_digest(x_api_key.encode(), expected_key.encode()):
        request.app.state.logging.warning(
            "Rejected %s %s: invalid or missing API key.", request.method, request.url.path
        )
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
