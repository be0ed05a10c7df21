"""
Domain error types.

Routers translate these to HTTP status codes; the tool gateway turns them
into ``{"success": False}`` results.
"""


class DomainError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(DomainError):
    """Malformed or schema-invalid input from the immediate caller."""


class UnsupportedFileError(InvalidInputError):
    """Upload whose extension or content is not an accepted export format."""


class IngestionParseError(InvalidInputError):
    """The export could not be parsed; carries the parser's message."""


class UploadTooLargeError(DomainError):
    status_code = 413


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, resource: str, identifier: object):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier
