"""Enumeration types for the pool reward engine."""

from enum import Enum


class Mode(str, Enum):
    """How the margin used for reward computation is chosen."""

    CUSTOM_MARGIN = "CUSTOM_MARGIN"
    MEDIAN_MARGIN = "MEDIAN_MARGIN"
    PERCENTAGE = "PERCENTAGE"


class SyncPhase(str, Enum):
    """Lifecycle phase of the epoch sync controller."""

    COLD = "cold"
    FULL_FETCH = "full_fetch"
    INCREMENTAL_UPDATE = "incremental_update"
    STEADY = "steady"


class PoolStatus(str, Enum):
    """Registration status reported by the pool list."""

    REGISTERED = "registered"
    RETIRING = "retiring"
    RETIRED = "retired"
