"""Errors raised by carousel and media operations."""


class CarouselError(Exception):
    """Base class for errors that carry a user-facing message."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class SessionExpired(CarouselError):
    """Raised when the session key is absent or its TTL has fired."""

    default_message = "Session expired. Please run the command again."


class ItemMissing(CarouselError):
    """Raised when the session exists but no longer holds the item."""

    default_message = "Media not found in current session."


class Unauthorized(CarouselError):
    """Raised when a mutation is denied."""

    default_message = (
        "Failed to delete. You can only delete your own media (or if you're an admin)."
    )


class ValidationFailed(CarouselError):
    """Raised when user input is rejected."""

    default_message = "No valid tags provided. Tags must be alphanumeric + underscore only."


class BackingStoreFailure(CarouselError):
    """Raised when a repository call fails."""

    default_message = "Something went wrong. Please try again later."


class DeliveryFailure(CarouselError):
    """Raised when the destination rejects a media payload."""

    default_message = "Failed to send. Please try again."

    def __init__(self, message: str | None = None, *, too_large: bool = False) -> None:
        self.too_large = too_large
        super().__init__(message)


class EmptyTagsError(ValueError):
    """Raised by repositories when asked to store an empty tag list."""
