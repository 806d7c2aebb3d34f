"""Clases base para fuentes de pasos."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

StepsListener = Callable[[], None]


class StepSignal(Protocol):
    """Anything that can report cumulative steps and announce new samples."""

    def cumulative_steps(self, start: datetime, end: datetime) -> int: ...

    def subscribe(self, listener: StepsListener) -> Callable[[], None]: ...


class StepSignalError(RuntimeError):
    """A step query could not be answered."""


@dataclass(frozen=True)
class SourcePaths:
    """Container for source directories."""

    root: Path


class DataSource(ABC):
    """Abstract file-backed data source."""

    def __init__(self, paths: SourcePaths) -> None:
        """Create a data source.

        Args:
            paths: Source paths configuration.
        """
        self._paths = paths

    @abstractmethod
    def validate(self) -> None:
        """Validate that required folders/files exist.

        Raises:
            FileNotFoundError: If required files are missing.
        """
