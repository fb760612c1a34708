"""HTTP delivery to the external push-notification function."""

import logging

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


def send_push(payload: dict) -> dict:
    """
    POST one notification payload.

    Raises ``httpx.HTTPError`` on transport failures and non-2xx answers so
    the RQ job is marked failed.
    """
    response = httpx.post(settings.push_function_url, json=payload, timeout=settings.push_timeout)
    response.raise_for_status()
    logger.info("Push delivered to %d recipients", len(payload.get("user_ids", [])))
    return {"status_code": response.status_code}
