"""Exception hierarchy for the Tender Deduplication Lambda."""


class TenderDedupError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(TenderDedupError, ValueError):
    """A required environment variable is missing or malformed."""


class CacheNotInitializedError(TenderDedupError, RuntimeError):
    """The dedup cache was queried before it was populated."""


class CachePopulationError(TenderDedupError):
    """Loading known tender numbers from the store failed for one or more sources."""

    def __init__(self, failed_sources, cause: Exception):
        self.failed_sources = list(failed_sources)
        super().__init__(
            f"Failed to load tender numbers for source(s) {', '.join(self.failed_sources)}: {cause}"
        )


class MalformedMessageError(TenderDedupError, ValueError):
    """A message body is not a JSON object and can never be processed."""


class MessageRoutingError(TenderDedupError):
    """One or more payloads could not be delivered to a downstream queue."""

    def __init__(self, queue_url: str, failed_count: int, total_count: int):
        self.queue_url = queue_url
        self.failed_count = failed_count
        self.total_count = total_count
        super().__init__(
            f"Failed to send {failed_count} of {total_count} messages to {queue_url}."
        )
