"""
Error taxonomy for the feed service.

Only FeedError subclasses ever reach the client; CacheError and WriteFailure
are raised and caught inside the service and end up as log lines and
counters.
"""


class FeedError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_body(self) -> dict:
        return {"error": self.kind, "message": self.message}


class InvalidRequest(FeedError):
    kind = "invalid_request"
    status_code = 400


class RepositoryUnavailable(FeedError):
    """Every candidate bucket and the fallback query failed."""
    kind = "internal"
    status_code = 500


class DeadlineExceeded(FeedError):
    kind = "deadline_exceeded"
    status_code = 504


class CacheError(Exception):
    pass


class WriteFailure(Exception):
    def __init__(self, sink: str, message: str = "") -> None:
        super().__init__(f"{sink}: {message}" if message else sink)
        self.sink = sink
