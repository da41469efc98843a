# supplywatch/errors.py

"""Exception taxonomy for the supplier monitoring engine."""


class SupplyWatchError(Exception):
    """Base class for every error raised by supplywatch."""


class ConfigurationError(SupplyWatchError):
    """Policy or settings values are inconsistent."""


class InvalidObservation(SupplyWatchError):
    """A supplier observation failed validation and was discarded."""

    def __init__(self, product_id: str, reason: str) -> None:
        super().__init__(f"Invalid observation for {product_id}: {reason}")
        self.product_id = product_id
        self.reason = reason


class PolicyTimeout(SupplyWatchError):
    """A policy invocation exceeded its time budget.

    Transient: the attempt is retried on the next scheduled cycle.
    """

    def __init__(self, product_id: str, timeout: float) -> None:
        super().__init__(
            f"Policy run for {product_id} exceeded {timeout:.1f}s"
        )
        self.product_id = product_id
        self.timeout = timeout


class NoSuitableReplacement(SupplyWatchError):
    """No candidate listing cleared the acceptance threshold."""

    def __init__(self, product_id: str, reason: str) -> None:
        super().__init__(
            f"No suitable replacement for {product_id}: {reason}"
        )
        self.product_id = product_id
        self.reason = reason


class ConcurrentWriteConflict(SupplyWatchError):
    """An optimistic (conditional) write found a newer record version."""

    def __init__(self, product_id: str, expected_version: int) -> None:
        super().__init__(
            f"Write conflict on {product_id} "
            f"(expected version {expected_version})"
        )
        self.product_id = product_id
        self.expected_version = expected_version


class PersistenceUnavailable(SupplyWatchError):
    """The product store could not be reached. Fatal to the caller."""


class ProductNotFound(SupplyWatchError):
    """No product record exists for the requested id."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class AccessDenied(SupplyWatchError):
    """The product is outside the caller's user scope."""

    def __init__(self, product_id: str, user_id: str) -> None:
        super().__init__(
            f"User {user_id} may not touch product {product_id}"
        )
        self.product_id = product_id
        self.user_id = user_id


class CandidateSearchError(SupplyWatchError):
    """The external candidate search service failed or timed out."""
