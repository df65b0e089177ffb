from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from schemas import QueryLogEntry, RawSnapshot


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class QueryLog(SQLModel, table=True):
    id: str = Field(primary_key=True)
    seq: int = 0                                # insertion order within a store
    case_type: str
    case_number: str
    filing_year: str
    court: str = Field(index=True)
    created_at: datetime = Field(index=True)
    success: bool = False
    error: Optional[str] = None
    source_url: Optional[str] = None            # portal URL used
    retrieved_at: Optional[datetime] = None
    method: Optional[str] = None                # mock_scraping | dataset
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: QueryLogEntry, seq: int = 0) -> "QueryLog":
        snap = entry.result_snapshot
        return cls(
            id=entry.id,
            seq=seq,
            case_type=entry.case_type,
            case_number=entry.case_number,
            filing_year=entry.filing_year,
            court=entry.court,
            created_at=entry.timestamp,
            success=entry.success,
            error=entry.error,
            source_url=snap.source_url if snap else None,
            retrieved_at=snap.retrieved_at if snap else None,
            method=snap.method if snap else None,
            user_agent=entry.user_agent,
            ip_address=entry.ip_address,
        )

    def to_entry(self) -> QueryLogEntry:
        snapshot = None
        if self.retrieved_at is not None:
            snapshot = RawSnapshot(
                source_url=self.source_url or "",
                retrieved_at=_as_utc(self.retrieved_at),
                method=self.method or "unknown",
            )
        return QueryLogEntry(
            id=self.id,
            case_type=self.case_type,
            case_number=self.case_number,
            filing_year=self.filing_year,
            court=self.court,
            timestamp=_as_utc(self.created_at),
            success=self.success,
            error=self.error,
            result_snapshot=snapshot,
            user_agent=self.user_agent,
            ip_address=self.ip_address,
        )
