"""Exception types raised by the dispatch core.

Solve outcomes (infeasible, time limit, ...) are reported as data on
``SolverResult`` and never raised. Exceptions are reserved for problems that
make a build or solve impossible.
"""


class HydroDispatchError(Exception):
    """Base class for all hydrodispatch errors."""


class ConfigurationError(HydroDispatchError, ValueError):
    """Invalid model input detected at build time.

    Raised for a missing boundary condition, a cycle in the hydro cascade,
    a quantity kind requested for an entity that does not declare it, or
    invalid option values.
    """


class SolverUnavailableError(HydroDispatchError, RuntimeError):
    """No usable solver could be obtained from the backend."""
