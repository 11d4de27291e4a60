"""
Error types raised while disaggregating OD data.

Every error is fatal for the row that triggered it, and the engine does not
skip rows, so in practice a raised error aborts the whole run.
"""


class JitterError(ValueError):
    """Base class for all odjitter errors."""


class MalformedInput(JitterError):
    """A zone, subpoint or OD input is structurally invalid."""


class MissingOrNonNumericColumn(JitterError):
    """A required OD column is absent or doesn't hold a usable number."""


class UnknownZone(JitterError):
    """An OD row references a zone id that isn't in the zone registry."""

    def __init__(self, zone_id: str, column: str):
        self.zone_id = zone_id
        self.column = column
        super().__init__(f"Zone {zone_id!r} from column {column!r} isn't in the zones file")


class NoCandidatePoints(JitterError):
    """A zone has no subpoints to sample from."""

    def __init__(self, zone_id: str):
        self.zone_id = zone_id
        super().__init__(f"No subpoints for zone {zone_id!r}")


class InfeasibleUniqueness(JitterError):
    """More unique pairs were requested than the subpoints can provide."""


class DegenerateGeometry(JitterError):
    """A zone polygon is empty or has no usable bounding box."""


class SamplingExhausted(JitterError):
    """The accept/reject loop hit its attempt cap without finding a valid draw."""
