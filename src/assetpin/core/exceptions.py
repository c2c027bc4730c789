"""Custom exceptions for the asset pinning pipeline."""


class AssetPipelineError(Exception):
    """Base exception for the asset pipeline."""

    status_code = 500


class ValidationError(AssetPipelineError):
    """Exception raised for client mistakes that must not be retried as-is."""

    status_code = 400


class UnknownSession(ValidationError):
    """Exception raised when a session id was never registered."""

    def __init__(self, session_id: str):
        super().__init__(f"Unknown upload session: {session_id}")
        self.session_id = session_id


class SessionMismatch(ValidationError):
    """Exception raised when a chunk disagrees with its session's total chunk count."""

    def __init__(self, session_id: str, expected: int, received: int):
        super().__init__(
            f"Session {session_id} expects {expected} chunks, chunk declared {received}"
        )
        self.session_id = session_id
        self.expected = expected
        self.received = received


class InvalidSessionId(ValidationError):
    """Exception raised when a session id is not safe to use as a directory name."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Invalid session id {session_id!r}: use 1-128 letters, digits, '-' or '_'"
        )
        self.session_id = session_id


class InvalidChunk(ValidationError):
    """Exception raised when a chunk index or count is out of range."""
    pass


class MissingHeaders(ValidationError):
    """Exception raised when chunk headers are absent or malformed."""
    pass


class PayloadTooLarge(AssetPipelineError):
    """Exception raised when a file exceeds the per-file size limit."""

    status_code = 400

    def __init__(self, file_name: str, size_bytes: int, limit_bytes: int):
        super().__init__(
            f"File {file_name} is too large ({size_bytes} bytes). "
            f"Maximum size is {limit_bytes} bytes"
        )
        self.file_name = file_name
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class MergeError(AssetPipelineError):
    """Exception raised when chunk directories cannot be merged."""
    pass


class PackingError(AssetPipelineError):
    """Exception raised when a folder cannot be packed into a CAR archive."""
    pass


class UploadError(AssetPipelineError):
    """Exception raised when an archive upload to the object store fails."""
    pass


class MetadataRewriteError(AssetPipelineError):
    """Exception raised when a metadata record cannot be rewritten."""

    def __init__(self, message: str, file_name: str | None = None):
        super().__init__(message)
        self.file_name = file_name
