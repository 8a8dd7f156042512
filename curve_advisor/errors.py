"""
Exception taxonomy for the curve advisor.

Only routing failures and invalid sensor input are ever raised to callers.
Road attribute failures are converted to degraded values at the provider
boundary and filter divergence is recovered inside the estimator.
"""


class CurveAdvisorError(Exception):
    """Base class for all curve advisor errors."""


class SensorFixInvalid(CurveAdvisorError):
    """A position fix with non-finite coordinates or timestamp."""


class RoutingError(CurveAdvisorError):
    """The routing service failed or returned fewer than two points."""


class RoadAttributeUnavailable(CurveAdvisorError):
    """A road attribute provider could not answer."""


class RateLimited(RoadAttributeUnavailable):
    """Provider quota exhausted."""


class NetworkError(RoadAttributeUnavailable):
    """Provider unreachable or timed out."""
