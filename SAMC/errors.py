"""
Description:
    Exception taxonomy for SAMC.
    USE THE CORRECT ENVIRONMENT:  SAMC

Author: John Gallagher
Created: 2026-10-18
Last Modified: 2026-10-18
Version: 0.1

ConfigurationError is fatal and raised before the loop starts.
EvaluationError is recovered per iteration as a rejection.
RunFailure is attached to a partial RunResult when too many evaluations fail.
"""
from typing import Optional
import numpy as np


class SAMCError(Exception):
    """Base class for all SAMC errors"""


class ConfigurationError(SAMCError, ValueError):
    """Invalid partition, gain schedule, options or energy probe"""


class EvaluationError(SAMCError):
    """
    Energy evaluation failed: raised, returned NaN, returned a non-scalar
    or timed out.

    Carries the iteration index and the proposed point so a failure can be
    replayed from the same seed.
    """
    def __init__(self, reason: str, iteration: int = 0, point=None):
        self.reason = reason
        self.iteration = int(iteration)
        self.point = None if point is None else np.array(point, dtype=float)
        super().__init__(f"{reason} (iteration {self.iteration}, x={self.point})")


class RunFailure(SAMCError):
    """Run stopped early because the evaluation error rate exceeded the tolerance"""
    def __init__(
        self,
        reason: str,
        iteration: int,
        point=None,
        last_error: Optional[EvaluationError] = None
    ):
        self.reason = reason
        self.iteration = int(iteration)
        self.point = None if point is None else np.array(point, dtype=float)
        self.last_error = last_error
        super().__init__(f"{reason} (stopped at iteration {self.iteration})")
