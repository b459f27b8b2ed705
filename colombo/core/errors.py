# colombo/core/errors.py
# Error taxonomy of the guide pipeline. Every error carries a machine code and a
# message that can be shown to the user as-is.

from typing import Optional

from colombo.models.dto import ErrorInfo


class ColomboError(Exception):
    code = "COLOMBO_ERROR"
    default_detail = "Unexpected error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.default_detail)

    @property
    def detail(self) -> str:
        return str(self)

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(error=self.code, detail=self.detail)


class InvalidArgument(ColomboError, ValueError):
    code = "INVALID_ARGUMENT"
    default_detail = "Invalid argument"


class IllegalStateError(ColomboError):
    """A command that the current state does not accept."""
    code = "ILLEGAL_STATE"
    default_detail = "Command not allowed in the current state"


class LandmarkNotFound(ColomboError, LookupError):
    code = "LANDMARK_NOT_FOUND"
    default_detail = "Landmark is not in the current results"

# --- Location ---

class LocationError(ColomboError):
    code = "LOCATION_ERROR"
    default_detail = "Location error"


class LocationPermissionError(LocationError):
    """Access denied or restricted. Terminal until the user grants access again."""
    code = "LOCATION_DENIED"
    default_detail = "Location access denied. Please enable it in Settings."


class TransientLocationError(LocationError):
    code = "LOCATION_TRANSIENT"
    default_detail = "Location temporarily unavailable"


class LocationUnknownError(TransientLocationError):
    code = "LOCATION_UNKNOWN"
    default_detail = "Unable to determine location. Please try again."


class LocationNetworkError(TransientLocationError):
    code = "LOCATION_NETWORK"
    default_detail = "Network error. Please check your connection."

# --- Landmark and article providers ---

class ProviderError(ColomboError):
    code = "PROVIDER_ERROR"
    default_detail = "Search provider failed"


class NetworkError(ProviderError):
    code = "PROVIDER_NETWORK_ERROR"
    default_detail = "Search provider is unreachable"


class DecodeError(ProviderError):
    code = "PROVIDER_DECODE_ERROR"
    default_detail = "Search provider returned a malformed response"

# --- Narration ---

class NarrationError(ColomboError):
    code = "NARRATION_ERROR"
    default_detail = "Narration failed"


class InvalidURL(NarrationError):
    code = "INVALID_URL"
    default_detail = "Invalid URL"


class Unauthorized(NarrationError):
    code = "UNAUTHORIZED"
    default_detail = "Unauthorized access"


class MissingData(NarrationError):
    code = "MISSING_DATA"
    default_detail = "Missing required data"


class ServerError(NarrationError):
    code = "SERVER_ERROR"
    default_detail = "Server error"


class InvalidResponse(NarrationError):
    code = "INVALID_RESPONSE"
    default_detail = "Invalid server response"


class NarrationNetworkError(NarrationError):
    code = "NETWORK_ERROR"
    default_detail = "Network error"

    def __init__(self, detail: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(detail)
        self.cause = cause


class NarrationTimeout(NarrationNetworkError):
    code = "TIMEOUT"
    default_detail = "Request timed out. Please try again."


class NarrationDecodeError(NarrationError):
    code = "DECODE_ERROR"
    default_detail = "Error parsing server response"

# --- Audio ---

class AudioError(ColomboError):
    code = "AUDIO_ERROR"
    default_detail = "Audio error"


class InvalidSource(AudioError):
    code = "INVALID_AUDIO_SOURCE"
    default_detail = "Invalid audio URL"


class LoadFailure(AudioError):
    code = "AUDIO_LOAD_FAILED"
    default_detail = "Failed to load audio"
