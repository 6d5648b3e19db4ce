"""Error taxonomy for capture, extraction and persistence failures."""


class NutriVoiceError(Exception):
    """Base error carrying a human-readable message."""

    code = "error"
    status_code: int | None = None

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class DeviceUnavailableError(NutriVoiceError):
    """Microphone permission was denied or no capture device exists."""

    code = "device_unavailable"


class SessionBusyError(NutriVoiceError):
    """Another recording session already holds the capture device."""

    code = "session_busy"


class ExtractionRequestError(NutriVoiceError):
    """The extraction request was malformed."""

    code = "bad_request"
    status_code = 400


class PayloadTooShortError(ExtractionRequestError):
    """The decoded audio payload is below the minimum byte threshold."""

    code = "payload_too_short"


class UpstreamRateLimitedError(NutriVoiceError):
    """The upstream model rejected the call with a quota error."""

    code = "upstream_rate_limited"
    status_code = 429


class UpstreamOverloadedError(NutriVoiceError):
    """The upstream model is overloaded."""

    code = "upstream_overloaded"
    status_code = 503


class UpstreamAuthFailureError(NutriVoiceError):
    """The upstream credential was rejected."""

    code = "upstream_auth_failure"
    status_code = 502


class UpstreamProtocolError(NutriVoiceError):
    """The upstream answered with an error or an unexpected shape."""

    code = "upstream_error"
    status_code = 502


class ConfigurationError(NutriVoiceError):
    """Required server configuration is missing."""

    code = "configuration"
    status_code = 500


class NetworkError(NutriVoiceError):
    """The client could not reach the extraction endpoint."""

    code = "network"


class PersistenceError(NutriVoiceError):
    """A CRUD operation against the persistence collaborator failed."""

    code = "persistence"


ENDPOINT_ERRORS: dict[str, type[NutriVoiceError]] = {
    error.code: error
    for error in (
        ExtractionRequestError,
        PayloadTooShortError,
        UpstreamRateLimitedError,
        UpstreamOverloadedError,
        UpstreamAuthFailureError,
        UpstreamProtocolError,
        ConfigurationError,
    )
}
