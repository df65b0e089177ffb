from typing import Dict, Optional

# Stable error codes carried in search outcomes and log entries
ERROR_MESSAGES: Dict[str, str] = {
    # Input
    "VALIDATION_ERROR": "Invalid case query",
    "UNKNOWN_COURT": "Court is not supported",
    "UNKNOWN_CASE_TYPE": "Case type is not available for this court",
    # Challenge protocol
    "CHALLENGE_REQUIRED": "CAPTCHA verification required",
    "CHALLENGE_MISMATCH": "Invalid CAPTCHA. Please try again.",
    # Source
    "UPSTREAM_FAILURE": "Failed to fetch case details",
    "CASE_NOT_FOUND": "No records found for the given case number.",
    # Log store
    "PERSISTENCE_FAILED": "Query history could not be saved",
}


def message_for(code: str) -> Optional[str]:
    return ERROR_MESSAGES.get(code)


def make_error(
    code: str, message: Optional[str] = None, details: Optional[str] = None
) -> Dict[str, Optional[str]]:
    return {
        "code": code,
        "message": message or message_for(code),
        "details": details,
    }


class CaseQueryError(Exception):
    """Base for failures the orchestrator turns into error outcomes."""

    code = "UPSTREAM_FAILURE"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or message_for(self.code) or self.code)

    @property
    def message(self) -> str:
        return str(self)


class QueryValidationError(CaseQueryError):
    """Raised when a query is malformed (bad case number, year or type)."""

    code = "VALIDATION_ERROR"


class UnknownCourt(CaseQueryError):
    """Raised when the query names a court with no configuration."""

    code = "UNKNOWN_COURT"


class UnknownCaseType(CaseQueryError):
    """Raised when the case type is not offered by the selected court."""

    code = "UNKNOWN_CASE_TYPE"


class ChallengeMismatch(CaseQueryError):
    """Raised when a CAPTCHA solution does not match the pending challenge."""

    code = "CHALLENGE_MISMATCH"
    retryable = True


class UpstreamFailure(CaseQueryError):
    """Raised by case-data sources when the court data cannot be fetched."""

    code = "UPSTREAM_FAILURE"
    retryable = True


class CaseNotFound(UpstreamFailure):
    """Raised when the source has no record for the requested case."""

    code = "CASE_NOT_FOUND"


class PersistenceWarning(UserWarning):
    """Emitted when query history cannot be saved or loaded."""
