"""
Error taxonomy for the capture -> transport -> overlay pipeline.

Capture-time errors are recovered locally by the capture controller.
Transport-time errors are logged and swallowed by the relay.
HTTP-facing errors render as {status, statusCode, message} bodies.
"""


class LensRelayError(Exception):
    """Base class for all LensRelay errors."""


class CameraAcquisitionError(LensRelayError):
    """Camera device denied or unavailable."""

    def __init__(self, facing_mode: str, reason: str = ""):
        self.facing_mode = facing_mode
        self.reason = reason
        message = f"Could not acquire '{facing_mode}' camera"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EncodingUnsupportedError(LensRelayError):
    """None of the preferred recording codecs is supported."""

    def __init__(self, preferences: list[str]):
        self.preferences = list(preferences)
        super().__init__(f"No supported recording codec in {self.preferences}")


class TransportError(LensRelayError):
    """Base class for relay side-effect failures."""


class StorageWriteError(TransportError):
    """Blob storage rejected a write."""

    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        super().__init__(f"Failure to write {key} to storage" + (f": {reason}" if reason else ""))


class PublishError(TransportError):
    """Broker rejected or failed to deliver an envelope."""

    def __init__(self, topic: str, key: str, reason: str = ""):
        self.topic = topic
        self.key = key
        self.reason = reason
        super().__init__(
            f"Failed to publish to topic '{topic}' (key={key})" + (f": {reason}" if reason else "")
        )


class HTTPError(LensRelayError):
    """Error reported to an HTTP client with a structured body."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_body(self) -> dict:
        return {
            "status": "error",
            "statusCode": self.status_code,
            "message": self.message,
        }


class UpstreamValidationError(HTTPError):
    """A required request field is missing."""

    status_code = 422

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = list(missing_fields)
        super().__init__(f"Missing Fields: {', '.join(self.missing_fields)}")


class InvalidFieldError(HTTPError):
    """A request field is present but out of range."""

    status_code = 422

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid Field: {field} ({reason})")


class InternalError(HTTPError):
    """Unhandled failure; details stay in the server logs."""

    status_code = 500

    def __init__(self, message: str = "An internal server error occurred."):
        super().__init__(message)


class NotFoundError(HTTPError):
    status_code = 404


class ServiceUnavailableError(HTTPError):
    status_code = 503
