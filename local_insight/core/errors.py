"""
Error taxonomy shared by the fetch layer, the cascades and the HTTP surface.

Upstream errors never escape a cascade: they become the ``error`` state of
the cache entry that produced them. Usage errors (unknown stage, missing
location) are raised to the caller and mapped to 4xx by the endpoints.
"""

from typing import Optional


class UpstreamError(Exception):
    """Base class for everything that can go wrong talking to an upstream API."""


class RequestTimeout(UpstreamError):
    def __init__(self, url: str, timeout: float):
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request timed out after {timeout:g}s: {url}")


class RequestFailed(UpstreamError):
    """
    Non-2xx response (or transport failure, reported with status 0).

    ``body`` keeps at most the first 200 characters of the response text.
    """

    def __init__(self, url: str, status: int, body: str = ""):
        self.url = url
        self.status = status
        self.body = (body or "")[:200]
        super().__init__(f"Request failed ({status}) {self.body}".rstrip())

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500


class DecodeFailed(UpstreamError):
    def __init__(self, url: str, reason: Optional[str] = None):
        self.url = url
        super().__init__(f"Response from {url} is not valid JSON" + (f": {reason}" if reason else ""))


class PostcodeNotFound(UpstreamError):
    def __init__(self, postcode: str):
        self.postcode = postcode
        super().__init__(f"No postcode result found for {postcode!r}")


# =========================
# Usage errors
# =========================
class UnknownStage(ValueError):
    pass


class UnknownParam(ValueError):
    pass


class LocationNotSet(RuntimeError):
    pass


def describe_error(error: Optional[BaseException]) -> Optional[dict]:
    """Serialisable summary of an error for a stage response."""
    if error is None:
        return None
    summary = {"type": type(error).__name__, "message": str(error)}
    if isinstance(error, RequestFailed):
        summary["status"] = error.status
    return summary
