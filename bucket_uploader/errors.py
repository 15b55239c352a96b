"""Error types raised by the upload client."""


class UploadError(Exception):
    """Base class for every failure surfaced by the upload client."""


class TransportError(UploadError):
    """Network failure, abort or rejected PUT while moving bytes or calling the API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# Name used for failures of a single part transfer
TransferError = TransportError


class ProtocolError(UploadError):
    """The control plane or an upload target answered with something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(UploadError):
    """A scheduled task failed on every attempt it was allowed.

    The last underlying failure is available as ``__cause__``.
    """

    def __init__(self, index: int, attempts: int) -> None:
        super().__init__(f"Task {index} failed after {attempts} attempts")
        self.index = index
        self.attempts = attempts


class UploadCancelledError(UploadError):
    """The caller asked for the upload to stop."""


class UnknownBucketError(UploadError, KeyError):
    """No bucket with the requested name is configured."""

    def __init__(self, bucket_name: str) -> None:
        super().__init__(f"Unknown bucket '{bucket_name}'")
        self.bucket_name = bucket_name

    def __str__(self) -> str:
        return str(self.args[0])
