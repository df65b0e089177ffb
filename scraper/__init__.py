from .base import CaseSource
from .dataset import DatasetCaseSource
from .mock import MockCaseSource

__all__ = ["CaseSource", "DatasetCaseSource", "MockCaseSource"]
