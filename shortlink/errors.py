"""Exception taxonomy for the short-link service.

Redirect-path failures never reach the visitor: the resolver maps every one of
them to the not-found redirect. The admin API maps them to JSON errors through
the handlers registered in ``shortlink.main``.
"""

__all__ = [
    "ShortlinkError",
    "SlugConflict",
    "LinkNotFound",
    "RecordingFailure",
    "GeoLookupFailure",
    "StorageFailure",
]


class ShortlinkError(Exception):
    """Base class for all service errors."""


class SlugConflict(ShortlinkError):
    """A custom slug is already assigned to another link."""

    def __init__(self, slug: str):
        super().__init__(f"Slug '{slug}' is already taken")
        self.slug = slug


class LinkNotFound(ShortlinkError):
    """No link matches the requested slug or id."""

    def __init__(self, key: str):
        super().__init__(f"Link '{key}' not found")
        self.key = key


class RecordingFailure(ShortlinkError):
    """Writing a click row or the link's last-click timestamp failed."""

    def __init__(self, link_id: str, cause: BaseException):
        super().__init__(f"Failed to record click for link '{link_id}': {cause}")
        self.link_id = link_id


class GeoLookupFailure(ShortlinkError):
    """The offline geolocation database is missing or unreadable."""


class StorageFailure(ShortlinkError):
    """The datastore raised while serving a request."""
