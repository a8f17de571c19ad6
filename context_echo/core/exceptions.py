"""Custom exceptions for memory graph operations."""


class KGError(Exception):
    """Base exception for memory graph operations."""
    category = "Internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.category}: {self.message}"

    def to_dict(self) -> dict:
        return {"category": self.category, "message": self.message}


class InvalidArgumentError(KGError):
    """Raised when a required argument is missing or has the wrong shape."""
    category = "InvalidArgument"


class SchemaValidationError(KGError):
    """Raised when a well-formed value fails a schema constraint."""
    category = "ValidationError"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}" if field else message)


class CorruptStateError(KGError):
    """Raised when a stored record exists but does not validate."""
    category = "CorruptState"

    def __init__(self, user_id: str, detail: str):
        self.user_id = user_id
        super().__init__(f"Stored memory for user '{user_id}' is corrupt: {detail}")


class StorageFailureError(KGError):
    """Raised on I/O errors unrelated to record content."""
    category = "StorageFailure"

    def __init__(self, user_id: str, detail: str):
        self.user_id = user_id
        super().__init__(f"Storage failure for user '{user_id}': {detail}")


class UnknownOperationError(KGError):
    """Raised when a tool name is not recognised."""
    category = "UnknownOperation"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class SessionHandshakeError(KGError):
    """Raised when a session's server cannot be connected to its transport."""
    category = "SessionHandshakeFailure"

    def __init__(self, session_id: str, detail: str):
        self.session_id = session_id
        super().__init__(f"Could not start session '{session_id}': {detail}")


class SessionEvictedError(KGError):
    """Raised when a request is sent through a session that was evicted."""
    category = "SessionEvicted"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' has been evicted")
