"""Resource sampling and process monitoring."""

from .metrics import MetricsSample, MetricsSampler
from .processes import ProcessWatch

__all__ = ["MetricsSample", "MetricsSampler", "ProcessWatch"]
