"""
The Odds API key resolution for HTTP requests
A caller may bring their own key in the X-API-Key header; otherwise the
server's THE_ODDS_API_KEY is used.  No key at all means mock data only.
"""

from fastapi import Security
from fastapi.security import APIKeyHeader
import logging
import os
from typing import Optional
from dotenv import load_dotenv

# Load .env file
load_dotenv()

logger = logging.getLogger(__name__)

# API Key header
API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_server_api_key() -> Optional[str]:
    """The Odds API key configured for this server, if any"""
    key = os.getenv("THE_ODDS_API_KEY")
    return key.strip() if key and key.strip() else None


async def resolve_odds_api_key(api_key: Optional[str] = Security(API_KEY_HEADER)) -> Optional[str]:
    """
    Odds API key for this request: header first, then environment.

    Usage in FastAPI routes:
        @app.get("/api/odds")
        async def odds(api_key: Optional[str] = Depends(resolve_odds_api_key)):
            ...
    """
    if api_key and api_key.strip():
        logger.debug("Odds API key source: header")
        return api_key.strip()

    key = get_server_api_key()
    logger.debug("Odds API key source: %s", "environment" if key else "none")
    return key
