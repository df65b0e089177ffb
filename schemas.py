from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake case in Python, camelCase on the wire; both accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenApiModel(ApiModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# ---------- reference data ----------
class CourtConfig(FrozenApiModel):
    name: str
    base_url: str
    search_url: str
    case_types: Tuple[str, ...]
    captcha_strategy: Literal["manual", "bypass", "service"] = "manual"


# ---------- query ----------
class CaseQuery(FrozenApiModel):
    # Contents are checked by the orchestrator so bad input becomes a typed
    # outcome rather than a request error.
    case_type: str
    case_number: str
    filing_year: str
    court: str

    @property
    def display_number(self) -> str:
        return f"{self.case_number}/{self.filing_year}"


class ChallengeState(FrozenApiModel):
    image_reference: str
    session_id: str
    expected_answer: str = Field(exclude=True, repr=False)
    issued_at: float = Field(default=0.0, exclude=True)


# ---------- case record ----------
class Parties(ApiModel):
    petitioner: List[str] = Field(default_factory=list)
    respondent: List[str] = Field(default_factory=list)


class OrderDocument(ApiModel):
    title: str
    date: str
    url: Optional[str] = None
    type: Literal["order", "judgment", "notice"] = "order"
    is_latest: bool = False


class RawSnapshot(FrozenApiModel):
    source_url: str = ""
    retrieved_at: datetime
    method: str = "unknown"


class CaseDetails(ApiModel):
    parties: Parties = Field(default_factory=Parties)
    filing_date: Optional[str] = None
    next_hearing_date: Optional[str] = None
    last_order_date: Optional[str] = None
    status: Optional[str] = None
    case_type: str
    case_number: str
    filing_year: str
    court: str
    orders: List[OrderDocument] = Field(default_factory=list)
    raw_source: Optional[RawSnapshot] = None

    @property
    def latest_order(self) -> Optional[OrderDocument]:
        return next((o for o in self.orders if o.is_latest), None)


# ---------- protocol ----------
class SearchRequest(ApiModel):
    query: CaseQuery
    solution: Optional[str] = None
    client_id: Optional[str] = None


class SearchOutcome(ApiModel):
    status: Literal["ok", "challenge", "error"]
    data: Optional[CaseDetails] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    image_reference: Optional[str] = None
    session_id: Optional[str] = None
    query: Optional[CaseQuery] = None

    @property
    def terminal(self) -> bool:
        return self.status != "challenge"

    @property
    def success(self) -> bool:
        return self.status == "ok"


# ---------- history ----------
class QueryLogEntry(FrozenApiModel):
    id: str
    case_type: str
    case_number: str
    filing_year: str
    court: str
    timestamp: datetime
    success: bool
    error: Optional[str] = None
    result_snapshot: Optional[RawSnapshot] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class CourtCount(ApiModel):
    court: str
    count: int


class CaseTypeCount(ApiModel):
    case_type: str
    count: int


class QueryStats(ApiModel):
    total_queries: int = 0
    successful_queries: int = 0
    success_rate: float = 0.0
    popular_courts: List[CourtCount] = Field(default_factory=list)
    popular_case_types: List[CaseTypeCount] = Field(default_factory=list)
