"""Custom exception hierarchy for rpi_common jobs.

Following error taxonomy: retryable, non-retryable, expected contention.
"""


class RpiCommonError(Exception):
    """Base exception for all framework errors."""

    pass


class RetryableError(RpiCommonError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(RpiCommonError):
    """Errors that should not be retried (configuration, logic errors)."""

    pass


class ConfigurationError(NonRetryableError):
    """Required configuration (broker host, credentials) is missing or invalid."""

    pass


class UnsupportedTransportError(NonRetryableError, ValueError):
    """Communications factory was asked for a transport it does not know."""

    def __init__(self, transport_type: str) -> None:
        """Initialize with the rejected transport name."""
        self.transport_type = transport_type
        super().__init__(
            f'Invalid "type" passed on to factory (provided: "{transport_type}")'
        )


class InvalidStateTransitionError(NonRetryableError, RuntimeError):
    """A run handle was moved along an edge the lifecycle does not allow."""

    pass


class JobError(NonRetryableError):
    """Job could not be loaded or reported a failure."""

    pass


class LockContentionError(RpiCommonError):
    """Another instance already holds the lock for this job identity."""

    def __init__(self, identity: str) -> None:
        """Initialize with the contended job identity."""
        self.identity = identity
        super().__init__(f"Lock for {identity!r} is held by another process")


class TransportError(RetryableError):
    """Broker connection, publish or subscribe failure."""

    pass
