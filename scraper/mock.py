import logging
import random
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from courts import DEFAULT_REGISTRY, CourtRegistry
from errors import UnknownCourt
from schemas import CaseDetails, CaseQuery, OrderDocument, Parties, RawSnapshot

logger = logging.getLogger("court_app.scraper.mock")

DATE_FORMAT = "%d/%m/%Y"

PETITIONERS = ["M/s ABC Corporation Ltd.", "Shri Ram Kumar"]
RESPONDENTS = ["State of Delhi", "Union of India", "Delhi Development Authority"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MockCaseSource:
    """
    Stand-in for the court portal: returns a plausible case record for any
    valid query, after an optional simulated network delay.
    """

    method = "mock_scraping"

    def __init__(
        self,
        courts: CourtRegistry = DEFAULT_REGISTRY,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utc_now,
        latency: float = 0.0,
    ):
        self.courts = courts
        self.rng = rng or random.Random()
        self.clock = clock
        self.latency = latency

    def _random_date(self, today: datetime, min_days: int, max_days: int) -> str:
        days = self.rng.randint(min_days, max_days)
        return (today + timedelta(days=days)).strftime(DATE_FORMAT)

    def fetch_case(self, query: CaseQuery) -> CaseDetails:
        court = self.courts.get(query.court)
        if court is None:
            raise UnknownCourt(f"Court is not supported: {query.court}")
        if self.latency > 0:
            time.sleep(self.latency)

        now = self.clock()
        case_number = query.display_number
        latest_order = self._random_date(now, -15, -1)
        notice = self._random_date(now, -45, -16)
        older_order = self._random_date(now, -90, -46)
        ref = uuid.uuid4().hex[:12]

        orders = [
            OrderDocument(title=f"Order dated {latest_order}", date=latest_order,
                          url=f"#order-{ref}-1", type="order", is_latest=True),
            OrderDocument(title=f"Notice dated {notice}", date=notice,
                          url=f"#notice-{ref}-2", type="notice"),
            OrderDocument(title=f"Order dated {older_order}", date=older_order,
                          url=f"#order-{ref}-3", type="order"),
        ]
        logger.debug("Mock record generated for %s", case_number)
        return CaseDetails(
            parties=Parties(petitioner=list(PETITIONERS), respondent=list(RESPONDENTS)),
            filing_date=self._random_date(now, -365, -30),
            next_hearing_date=self._random_date(now, 1, 60),
            last_order_date=latest_order,
            status="Pending",
            case_type=query.case_type,
            case_number=case_number,
            filing_year=query.filing_year,
            court=query.court,
            orders=orders,
            raw_source=RawSnapshot(
                source_url=f"{court.search_url}?case={case_number}",
                retrieved_at=now,
                method=self.method,
            ),
        )
