from typing import Dict, List, Optional

from schemas import CourtConfig

# Court configurations
SUPPORTED_COURTS: List[CourtConfig] = [
    CourtConfig(
        name="Delhi High Court",
        base_url="https://delhihighcourt.nic.in",
        search_url="https://delhihighcourt.nic.in/case_search.asp",
        case_types=(
            "Civil Appeal", "Criminal Appeal", "Civil Writ Petition",
            "Criminal Writ Petition", "Company Petition", "Arbitration Petition",
            "Tax Appeal", "Service Matter", "Land Acquisition",
        ),
        captcha_strategy="manual",
    ),
    CourtConfig(
        name="Faridabad District Court",
        base_url="https://districts.ecourts.gov.in/faridabad",
        search_url="https://districts.ecourts.gov.in/faridabad/case_search",
        case_types=(
            "Civil Suit", "Criminal Case", "Matrimonial", "Recovery",
            "Motor Accident Claims", "Labour Dispute", "Revenue",
        ),
        captcha_strategy="manual",
    ),
]


class CourtRegistry:
    """Read-only lookup of court configurations by name."""

    def __init__(self, courts: List[CourtConfig]):
        self._courts: Dict[str, CourtConfig] = {c.name: c for c in courts}

    def get(self, name: str) -> Optional[CourtConfig]:
        return self._courts.get(name)

    def all(self) -> List[CourtConfig]:
        return list(self._courts.values())


DEFAULT_REGISTRY = CourtRegistry(SUPPORTED_COURTS)
