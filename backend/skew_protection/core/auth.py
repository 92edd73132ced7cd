"""API Authentication"""

from typing import Optional
from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
import logging

logger = logging.getLogger(__name__)

# Define API key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, api_key: str = Security(api_key_header)) -> Optional[str]:
    """
    Verify API key from request header.

    Raises:
        HTTPException: If API key is missing or invalid
    """
    settings = request.app.state.settings
    # Check if API key is configured
    if not settings.api_key:
        logger.warning("SKEW_API_KEY not configured - authentication disabled")
        return None

    if not api_key:
        logger.warning("Request missing X-API-Key header")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Please provide X-API-Key header.",
        )

    if api_key != settings.api_key:
        logger.warning(f"Invalid API key attempt: {api_key[:4]}...")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key
