"""
Error types for clustermath.

Every fallible clustering operation raises one of these with a
descriptive message. The analysis layer catches them per output so that
one failing output does not block the others.
"""


class ClusteringError(Exception):
    """Base class for all clustering failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(ClusteringError, ValueError):
    """Invalid configuration or unusable input (no variables, too few cases...)."""


class ScheduleError(ClusteringError):
    """Agglomeration could not produce a complete schedule."""

    def __init__(self, stage: int):
        super().__init__(f"failed to find closest clusters at stage {stage}")
        self.stage = stage


class DendrogramError(ClusteringError):
    """A schedule could not be turned into a tree."""

    def __init__(self, detail: str = ""):
        message = "invalid agglomeration schedule: failed to build dendrogram"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
