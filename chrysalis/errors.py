"""Error kinds surfaced by the chapter/version core.

Every failure reaches the caller unchanged; nothing here retries or repairs.
"""


class ChrysalisError(RuntimeError):
    pass


class NotFound(ChrysalisError):
    """A referenced chapter or version does not exist, or a required current version is missing."""


class InvalidOperation(ChrysalisError):
    """The request would break an invariant (e.g. deleting the current version)."""


class StoreUnavailable(ChrysalisError):
    """The underlying store failed or timed out."""


__all__ = ["ChrysalisError", "NotFound", "InvalidOperation", "StoreUnavailable"]
