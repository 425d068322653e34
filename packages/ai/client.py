import logging
from typing import Optional

from google import genai
from google.genai import errors

from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

# Messages the hosted API returns when the key is wrong, revoked or lacks access
_CREDENTIAL_MARKERS = (
    "api key not valid",
    "api_key_invalid",
    "permission denied",
    "entity was not found",
)


class AIServiceError(Exception):
    """Base class for failures talking to the hosted generative-AI service"""


class CredentialError(AIServiceError):
    """API key missing or rejected; the caller should ask for a new key"""


class AnalysisError(AIServiceError):
    """Similarity analysis failed for a reason other than credentials"""


class AssistantError(AIServiceError):
    """Chat or voice assistant call failed"""


def get_ai_client(settings: Optional[Settings] = None) -> genai.Client:
    """Build a client at the moment of use so a newly configured key is picked up"""
    settings = settings or get_settings()
    if not settings.api_key:
        raise CredentialError("API_KEY_MISSING: configure GEMINI_API_KEY before using the AI features")
    return genai.Client(api_key=settings.api_key)


def is_credential_failure(exc: BaseException) -> bool:
    if isinstance(exc, CredentialError):
        return True
    if isinstance(exc, errors.APIError):
        if exc.code in (401, 403):
            return True
        text = f"{exc.status or ''} {exc.message or ''}".lower()
        return any(marker in text for marker in _CREDENTIAL_MARKERS)
    return False


def translate_error(exc: Exception, fallback: type = AIServiceError, action: str = "AI request") -> AIServiceError:
    """Map an SDK exception to CredentialError or the given fallback type"""
    if isinstance(exc, AIServiceError):
        return exc
    if is_credential_failure(exc):
        return CredentialError(f"Missing or invalid API key: {exc}")
    return fallback(f"{action} failed: {exc}")
