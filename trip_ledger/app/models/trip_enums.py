"""
Trip ledger enumerations.
"""

import enum


class Severity(str, enum.Enum):
    """Severity of a validation finding or audit entry."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EdgeCaseKind(str, enum.Enum):
    """Classification that relaxes the standard range checks for a trip."""
    NONE = "none"
    MAINTENANCE = "maintenance"  # Service visit, little or no movement
    TEST = "test"  # Short test drive
    REFUELING = "refueling"  # Dedicated refueling stop
    LONG_HAUL = "long_haul"  # Declared long-haul/interstate run


class GapClass(str, enum.Enum):
    """Odometer gap between consecutive trips of a vehicle."""
    NEGATIVE = "negative"
    PERFECT = "perfect"
    SMALL = "small"
    MODERATE = "moderate"
    LARGE = "large"


class ChainBreakType(str, enum.Enum):
    """Gap classification used by the chain break detector."""
    NEGATIVE = "negative"
    CONTINUOUS = "continuous"
    SMALL = "small"
    LARGE = "large"


class OverlapType(str, enum.Enum):
    """How two overlapping trip intervals relate."""
    EXACT_DUPLICATE = "exact_duplicate"
    CONTAINED_WITHIN = "contained_within"  # First trip lies inside the second
    CONTAINS = "contains"  # First trip encloses the second
    PARTIAL_OVERLAP = "partial_overlap"


class ConflictScope(str, enum.Enum):
    """What two overlapping trips share."""
    VEHICLE = "vehicle"
    DRIVER = "driver"
    VEHICLE_AND_DRIVER = "vehicle_and_driver"


class MileageMethod(str, enum.Enum):
    """Fuel efficiency calculation method."""
    TANK_TO_TANK = "tank_to_tank"
    SIMPLE = "simple"  # First refueling of the vehicle
    NOT_APPLICABLE = "not_applicable"


class DeletionImpact(str, enum.Enum):
    """Impact of a delete request on the mileage chain."""
    NONE = "none"  # Not a refueling trip
    LOW = "low"  # Refueling trip without dependents
    MODERATE = "moderate"  # Next refueling trip takes over as anchor
    HIGH = "high"  # Dependents would lose their anchor


class DeletionOutcome(str, enum.Enum):
    """What the deletion guard actually did."""
    HARD_DELETED = "hard_deleted"
    SOFT_DELETED = "soft_deleted"
