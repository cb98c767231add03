"""Error kinds raised by the accessibility pipeline.

Lower layers (distance, allocation, optimizer) raise these immediately; the
orchestrator decides whether a scenario is abandoned or completed with
partial-result warnings.
"""

from typing import Optional


class AccessibilityError(Exception):
    """Base exception for the accessibility pipeline."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigurationError(AccessibilityError):
    """Missing or invalid run configuration (e.g. API key)."""


class InputDataError(AccessibilityError):
    """Prepared input data is missing, malformed or unusable."""


class EmptyFacilitySet(InputDataError):
    """Nearest-facility lookup against an empty facility set."""


class InsufficientBudget(InputDataError):
    """Fewer facilities requested than there are regions."""
    def __init__(self, total: int, n_regions: int):
        super().__init__(
            f"Cannot allocate {total} facilities across {n_regions} regions: "
            f"every region needs at least one"
        )
        self.total = total
        self.n_regions = n_regions


class InfeasibleRequest(AccessibilityError):
    """More facilities requested than candidate sites available."""
    def __init__(self, requested: int, available: int, region: Optional[str] = None):
        where = f" in region '{region}'" if region is not None else ""
        super().__init__(
            f"Requested {requested} facilities{where} but only {available} candidate sites exist"
        )
        self.requested = requested
        self.available = available
        self.region = region


class RoutingServiceError(AccessibilityError):
    """The routing collaborator failed or returned a malformed response."""
    def __init__(self, message: str, api_name: str = "openrouteservice",
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.api_name = api_name
        self.status_code = status_code


class ScenarioCancelled(AccessibilityError):
    """A scenario run was aborted before persistence."""
