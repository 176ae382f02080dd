"""Error taxonomy for the messaging core.

Every failure a caller can observe is one of these. The API layer maps them to
the ``{"success": false, "message": ...}`` envelope; nothing here knows about
HTTP status codes.
"""

from typing import Optional


class CourierError(Exception):

    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CourierError):

    default_message = "Invalid request"


class NotFound(CourierError):

    default_message = "Message not found"


class Unauthorized(CourierError):

    default_message = "Not allowed"


class Unauthenticated(CourierError):

    default_message = "Not authenticated"


class StoreError(CourierError):

    default_message = "Storage failure"


class MediaUploadError(CourierError):

    default_message = "Media upload failed"
