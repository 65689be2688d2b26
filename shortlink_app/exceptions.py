"""
Error taxonomy for the short link service.

Each error maps to one HTTP status; ``main.py`` renders them as
``{"message": ...}`` responses.
"""


class ShortLinkError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShortLinkError):
    """Malformed URL or alias (user-correctable)."""

    status_code = 400


class ConflictError(ShortLinkError):
    """Alias or short code already taken."""

    status_code = 400


class NotFoundError(ShortLinkError):
    """Unknown code/id, or a resource owned by someone else."""

    status_code = 404


class ResourceExhaustedError(ShortLinkError):
    """Short code allocation ran out of attempts."""

    status_code = 500


class StorageError(ShortLinkError):
    """Any persistence failure."""

    status_code = 500
