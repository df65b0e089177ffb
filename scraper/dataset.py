import glob
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pandas as pd

from errors import CaseNotFound
from schemas import CaseDetails, CaseQuery, OrderDocument, Parties, RawSnapshot

logger = logging.getLogger("court_app.scraper.dataset")

RowKey = Tuple[str, str, str]  # (court, case_number, filing_year); court may be ""


def _normalize_column(name: str) -> str:
    return str(name).strip().lower().replace(" ", "_")


def _first(data: Dict[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        v = data.get(key)
        if v and v.strip():
            return v.strip()
    return None


def _split_names(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [n.strip() for n in value.split(";") if n.strip()]


def parties_from_row(data: Dict[str, str]) -> Parties:
    """
    Build party lists from a CSV row. Uses petitioner/respondent columns
    (";"-separated), falling back to a "A vs B" title in parties/case_title.
    """
    petitioner = _split_names(_first(data, "petitioner", "petitioners", "plaintiff"))
    respondent = _split_names(_first(data, "respondent", "respondents", "defendant"))
    if petitioner or respondent:
        return Parties(petitioner=petitioner, respondent=respondent)

    title = _first(data, "parties", "case_title", "title", "case_name")
    if title:
        for sep in (" vs. ", " vs ", " v. ", " v "):
            if sep in title.lower():
                idx = title.lower().index(sep)
                return Parties(
                    petitioner=[title[:idx].strip()],
                    respondent=[title[idx + len(sep):].strip()],
                )
        return Parties(petitioner=[title])
    return Parties()


class DatasetCaseSource:
    """Serves case records from local CSV exports instead of the live portal."""

    method = "dataset"

    def __init__(self, dirs: List[str], pattern: str = "*.csv"):
        self.dirs = list(dirs)
        self.pattern = pattern
        self._rows: Dict[RowKey, dict] = {}
        self._summary: Dict[str, int] = {}
        self._lock = threading.Lock()

    def scanned_dirs(self) -> List[str]:
        return [d for d in self.dirs if os.path.isdir(d)]

    def reload(self) -> int:
        rows: Dict[RowKey, dict] = {}
        summary: Dict[str, int] = {}
        total = 0
        for folder in self.scanned_dirs():
            for path in sorted(glob.glob(os.path.join(folder, self.pattern))):
                try:
                    df = pd.read_csv(path, dtype=str)
                except Exception as e:
                    logger.warning("Failed to read %s: %s", path, e)
                    continue
                if df.empty:
                    continue
                df.columns = [_normalize_column(c) for c in df.columns]
                if "case_number" not in df.columns:
                    logger.warning("Skip: no case_number column in %s", path)
                    continue
                year_col = next((c for c in ("filing_year", "year") if c in df.columns), None)
                if year_col is None:
                    logger.warning("Skip: no filing_year or year column in %s", path)
                    continue
                cols = list(df.columns)
                loaded = 0
                for _, row in df.iterrows():
                    data = {c: ("" if pd.isna(row[c]) else str(row[c]).strip()) for c in cols}
                    number, year = data.get("case_number", ""), data.get(year_col, "")
                    if not number or not year:
                        continue
                    data["_source_file"] = path
                    rows[(data.get("court", ""), number, year)] = data
                    loaded += 1
                summary[os.path.basename(path)] = loaded
                total += loaded
        with self._lock:
            self._rows = rows
            self._summary = summary
        logger.info("Loaded rows=%s | files=%s | scanned=%s", total, summary, self.scanned_dirs())
        return total

    def summary(self) -> Dict[str, int]:
        return dict(self._summary)

    def _lookup(self, query: CaseQuery) -> Optional[dict]:
        with self._lock:
            return self._rows.get((query.court, query.case_number, query.filing_year)) or \
                self._rows.get(("", query.case_number, query.filing_year))

    def fetch_case(self, query: CaseQuery) -> CaseDetails:
        data = self._lookup(query)
        if data is None:
            raise CaseNotFound()

        orders: List[OrderDocument] = []
        last_order = _first(data, "last_order_date", "order_date")
        if last_order:
            orders.append(OrderDocument(
                title=f"Order dated {last_order}",
                date=last_order,
                url=_first(data, "order_url"),
                type="order",
                is_latest=True,
            ))

        return CaseDetails(
            parties=parties_from_row(data),
            filing_date=_first(data, "filing_date"),
            next_hearing_date=_first(data, "next_hearing_date", "next_hearing"),
            last_order_date=last_order,
            status=_first(data, "status") or "From Dataset",
            case_type=query.case_type,
            case_number=query.display_number,
            filing_year=query.filing_year,
            court=query.court,
            orders=orders,
            raw_source=RawSnapshot(
                source_url=f"file://{os.path.abspath(data['_source_file'])}",
                retrieved_at=datetime.now(timezone.utc),
                method=self.method,
            ),
        )
