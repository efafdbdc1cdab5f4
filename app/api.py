"""HTTP API for the trip safety report."""

import hmac
from typing import Optional

import redis
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from .config import settings
from .errors import InputValidationError
from .report_service import build_safety_report
from utils.logging_utils import get_tagged_logger, mask_url_credentials

logger = get_tagged_logger(__name__, tag="app/api")

# Optional Redis client for API key checks; fallback to a static key
_redis_client = None
if settings.api_key_redis_url:
    try:
        _redis_client = redis.Redis.from_url(settings.api_key_redis_url)
        logger.info("API key checks will use Redis backend",
                    extra={"redis_url": mask_url_credentials(settings.api_key_redis_url)})
    except (redis.RedisError, ValueError) as exc:
        logger.warning("Failed to configure Redis for API key checks; falling back to static key",
                       extra={"error": str(exc)})


def require_api_key(x_api_key: str | None = Header(default=None)):
    """
    Validate X-API-Key header against Redis (if configured) or the static api_key setting.
    """
    # No key configured anywhere: allow requests (dev/default mode).
    if not settings.api_key and not _redis_client:
        logger.debug("No API key or Redis client configured; allowing all requests")
        return

    if not x_api_key:
        logger.debug("No API key provided")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    if _redis_client:
        logger.debug("Checking API key against Redis")
        try:
            if _redis_client.sismember(settings.api_key_redis_set, x_api_key):
                return
        except redis.RedisError as e:
            logger.warning("Redis API key lookup error; falling back to static key",
                           extra={"error": str(e)})

    if settings.api_key and hmac.compare_digest(str(x_api_key), str(settings.api_key)):
        logger.debug("API key not found in Redis; matched static key.")
        return

    logger.debug("Invalid API key provided")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


router = APIRouter()


@router.get("/healthz")
def healthz() -> dict:
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/safety", dependencies=[Depends(require_api_key)])
def get_safety_report(
    lat: Optional[str] = Query(default=None),
    lon: Optional[str] = Query(default=None),
    date: Optional[str] = Query(default=None),
    start: Optional[str] = Query(default=None),
    travel_window_hours: Optional[str] = Query(default=None),
) -> dict:
    """
    Build the trip safety report for a coordinate, date and planned start.

    Query values arrive as raw strings so malformed input gets the report's own
    400 messages rather than framework validation errors.
    """
    try:
        return build_safety_report(lat, lon, date, start, travel_window_hours)
    except InputValidationError as exc:
        logger.info("Rejected safety request", extra={"error": exc.message, "lat": lat, "lon": lon})
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail())
