from typing import Protocol

from schemas import CaseDetails, CaseQuery


class CaseSource(Protocol):
    """External court data. May be slow; raises on any failure."""

    def fetch_case(self, query: CaseQuery) -> CaseDetails:
        ...
