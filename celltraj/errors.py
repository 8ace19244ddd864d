"""Exception types raised by celltraj stages."""

from __future__ import annotations

from typing import Any


class CellTrajError(Exception):
    """Base class for celltraj errors."""


class AlignmentError(CellTrajError, ValueError):
    """Expression matrix identifiers do not match the metadata tables."""


class PrecursorMissingError(CellTrajError, RuntimeError):
    """A stage ran before the derived field it consumes was computed."""

    def __init__(self, stage: str, missing: str, hint: str | None = None):
        self.stage = str(stage)
        self.missing = str(missing)
        self.hint = hint
        msg = f"{self.stage} requires {self.missing}, which has not been computed."
        if hint:
            msg = f"{msg} {hint}"
        super().__init__(msg)

    def __reduce__(self):
        return (self.__class__, (self.stage, self.missing, self.hint))


class ParameterError(CellTrajError, ValueError):
    """A stage parameter is outside its valid range."""

    def __init__(self, name: str, value: Any, reason: str):
        self.name = str(name)
        self.value = value
        self.reason = str(reason)
        super().__init__(f"Invalid {self.name}={value!r}: {self.reason}")

    def __reduce__(self):
        return (self.__class__, (self.name, self.value, self.reason))


class WorkerFailure(CellTrajError, RuntimeError):
    """One unit of a parallel stage failed; the whole stage is aborted.

    Instances are rebuilt from their constructor arguments when they cross a
    process boundary, so joblib can re-raise them in the parent.
    """

    def __init__(self, unit: Any, reason: str):
        self.unit = unit
        self.reason = str(reason)
        super().__init__(f"Worker failed on unit {unit!r}: {self.reason}")

    def __reduce__(self):
        return (self.__class__, (self.unit, self.reason))
