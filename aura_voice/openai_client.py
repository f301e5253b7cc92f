"""
Shared OpenAI client helpers
"""

import logging
from typing import Optional

import openai
from openai import OpenAI

from aura_voice.errors import ServiceFailure

logger = logging.getLogger(__name__)


def make_client(api_key: Optional[str], timeout: float) -> Optional[OpenAI]:
    """Build an OpenAI client, or None when no key is configured"""
    if not api_key:
        return None
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def classify_openai_error(error: Exception) -> ServiceFailure:
    """Map an OpenAI SDK exception to a service failure category"""
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ServiceFailure.AUTH_FAILURE
    if isinstance(error, openai.RateLimitError):
        return ServiceFailure.RATE_LIMITED
    if isinstance(error, openai.APIConnectionError):
        return ServiceFailure.NETWORK_FAILURE
    return ServiceFailure.SERVICE_ERROR
