"""Custom exceptions for the Funnel Sentinel detection core.

Normal operation raises nothing: zero denominators resolve to zero ratios,
filters with no matches yield empty alert sets and malformed records are
skipped and counted. These errors are reserved for inputs that would
otherwise be masked as "no issues found".
"""

from typing import List


class FunnelSentinelError(Exception):
    """Base for all funnel sentinel errors."""


class MissingInputError(FunnelSentinelError):
    """A required input collection was wholly absent."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Required input '{name}' is missing. "
            "Pass an empty collection to run against no data."
        )


class FrameSchemaError(FunnelSentinelError):
    """A source DataFrame is missing required columns."""

    def __init__(self, missing: List[str], available: List[str]):
        self.missing = missing
        self.available = available
        super().__init__(
            f"Missing required columns: {missing}. "
            f"Available columns: {available}"
        )


class UnknownDetectorError(FunnelSentinelError):
    """A run requested a detector name that is not registered."""

    def __init__(self, name: str, registered: List[str]):
        self.name = name
        self.registered = registered
        super().__init__(
            f"Unknown detector '{name}'. Registered detectors: {registered}"
        )


class PhaseTransitionError(FunnelSentinelError):
    """A lifecycle item was asked to move to an earlier phase."""

    def __init__(self, item_id: str, current: str, requested: str):
        self.item_id = item_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Issue {item_id} cannot move from '{current}' back to '{requested}'"
        )
