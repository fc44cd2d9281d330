"""
Error taxonomy for the collocation pipeline.

ConfigurationError and ComponentInstantiationError are raised before any
task is scheduled. DistributedTaskFailure is raised by the driver once a
task has used up its attempts; the phase it belongs to publishes nothing.
InvalidTermError rejects terms that would collide once joined into grams.
InconsistentCountsError flags counts that can only come from a broken
aggregation upstream (a marginal smaller than one of its n-grams).
"""


class CollocError(Exception):
    """Base class for every error raised by the pipeline."""


class ConfigurationError(CollocError, ValueError):
    """Invalid or missing numeric parameter."""


class ComponentInstantiationError(CollocError):
    """A pluggable analyzer could not be looked up or constructed."""


class DistributedTaskFailure(CollocError, RuntimeError):
    """A map/reduce task failed on every attempt."""

    def __init__(self, phase: str, task: int, attempts: int, cause: BaseException | None = None):
        self.phase = phase
        self.task = task
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{phase}: task {task} failed after {attempts} attempt(s) | {cause!r}")


class InconsistentCountsError(CollocError, ValueError):
    """Frequencies that cannot all be true at once."""


class InvalidTermError(CollocError, ValueError):
    """A term that is empty or contains whitespace, so it cannot be joined into a gram."""
