"""
Case query orchestration and the CAPTCHA challenge/response protocol.

An orchestrator owns at most one outstanding challenge. A search either
returns a terminal outcome ("ok" / "error") or a "challenge" outcome that the
caller answers by searching again with the user's solution. Logging terminal
outcomes is the caller's job.
"""
import enum
import logging
import random
import re
import string
import threading
import time
import uuid
from collections import OrderedDict
from typing import Callable, Iterable, Optional

from courts import DEFAULT_REGISTRY, CourtRegistry
from errors import (
    CaseQueryError,
    ChallengeMismatch,
    QueryValidationError,
    UnknownCaseType,
    UnknownCourt,
    message_for,
)
from scraper.base import CaseSource
from schemas import CaseQuery, ChallengeState, CourtConfig, SearchOutcome

logger = logging.getLogger("court_app.orchestrator")

CASE_NUMBER_RE = re.compile(r"^\d+$")
FILING_YEAR_RE = re.compile(r"^\d{4}$")

CAPTCHA_ALPHABET = string.ascii_uppercase + string.digits
CAPTCHA_LENGTH = 5
DEFAULT_IMAGE_BASE = "https://dummyimage.com/200x80/cccccc/000000.png&text="
DEFAULT_SENSITIVE_TYPES = frozenset({"Civil Appeal", "Criminal Appeal"})
DEFAULT_PROBABILITY = 0.3

TIMEOUT_REASON = "Timed out waiting for the court website"

VerificationPolicy = Callable[[CaseQuery, CourtConfig], bool]


class OrchestratorState(str, enum.Enum):
    IDLE = "idle"
    CHALLENGE_PENDING = "challenge_pending"


# ---------- verification policy ----------
def requires_challenge(
    query: CaseQuery,
    sensitive_case_types: Iterable[str],
    probability: float,
    draw: float,
) -> bool:
    """Pure decision: sensitive case types always, others when draw < probability."""
    if query.case_type in sensitive_case_types:
        return True
    return draw < probability


class RandomVerificationPolicy:
    def __init__(
        self,
        sensitive_case_types: Iterable[str] = DEFAULT_SENSITIVE_TYPES,
        probability: float = DEFAULT_PROBABILITY,
        rng: Optional[random.Random] = None,
    ):
        self.sensitive_case_types = frozenset(sensitive_case_types)
        self.probability = probability
        self.rng = rng or random.Random()

    def __call__(self, query: CaseQuery, court: CourtConfig) -> bool:
        if court.captcha_strategy == "bypass":
            return False
        return requires_challenge(
            query, self.sensitive_case_types, self.probability, self.rng.random()
        )


def always_challenge(query: CaseQuery, court: CourtConfig) -> bool:
    return True


def never_challenge(query: CaseQuery, court: CourtConfig) -> bool:
    return False


# ---------- challenge generation ----------
def generate_code(rng: random.Random, length: int = CAPTCHA_LENGTH) -> str:
    return "".join(rng.choice(CAPTCHA_ALPHABET) for _ in range(length))


def answers_match(solution: str, expected: str) -> bool:
    return solution.strip().upper() == expected.strip().upper()


# ---------- orchestrator ----------
class CaseQueryOrchestrator:
    def __init__(
        self,
        source: CaseSource,
        courts: CourtRegistry = DEFAULT_REGISTRY,
        policy: Optional[VerificationPolicy] = None,
        rng: Optional[random.Random] = None,
        image_base: str = DEFAULT_IMAGE_BASE,
        challenge_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.courts = courts
        self.policy = policy or RandomVerificationPolicy()
        self.rng = rng or random.SystemRandom()
        self.image_base = image_base
        self.challenge_ttl = challenge_ttl
        self.clock = clock
        self._challenge: Optional[ChallengeState] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> OrchestratorState:
        if self._challenge is None:
            return OrchestratorState.IDLE
        return OrchestratorState.CHALLENGE_PENDING

    @property
    def pending_challenge(self) -> Optional[ChallengeState]:
        return self._challenge

    def validate(self, query: CaseQuery) -> CourtConfig:
        """Check the query against the court configuration; raise on mismatch."""
        if not query.case_type or not query.case_type.strip():
            raise QueryValidationError("Case type is required")
        if not CASE_NUMBER_RE.match(query.case_number or ""):
            raise QueryValidationError("Case number must contain only digits")
        if not FILING_YEAR_RE.match(query.filing_year or ""):
            raise QueryValidationError("Filing year must be a 4-digit year")
        court = self.courts.get(query.court)
        if court is None:
            raise UnknownCourt(f"Court is not supported: {query.court}")
        if query.case_type not in court.case_types:
            raise UnknownCaseType(
                f"Case type '{query.case_type}' is not available for {court.name}"
            )
        return court

    def search(self, query: CaseQuery, solution: Optional[str] = None) -> SearchOutcome:
        try:
            court = self.validate(query)
        except CaseQueryError as e:
            logger.info("Rejected query %s: %s", query.display_number, e)
            return _failure(e)

        with self._lock:
            if solution is None:
                if self.policy(query, court):
                    challenge = self._issue_challenge()
                    logger.info(
                        "CAPTCHA required for %s (%s)", query.display_number, challenge.session_id
                    )
                    return SearchOutcome(
                        status="challenge",
                        reason=message_for("CHALLENGE_REQUIRED"),
                        error_code="CHALLENGE_REQUIRED",
                        image_reference=challenge.image_reference,
                        session_id=challenge.session_id,
                        query=query,
                    )
            else:
                pending, self._challenge = self._challenge, None
                problem = self._check_solution(pending, solution)
                if problem is not None:
                    fresh = self._issue_challenge(previous=pending)
                    logger.warning(
                        "CAPTCHA rejected for %s: %s", query.display_number, problem
                    )
                    return _failure(
                        ChallengeMismatch(problem),
                        query=query,
                        image_reference=fresh.image_reference,
                        session_id=fresh.session_id,
                    )

        return self._fetch(query)

    def _check_solution(self, pending: Optional[ChallengeState], solution: str) -> Optional[str]:
        if pending is None:
            return "No CAPTCHA is pending. Please try again."
        if self.challenge_ttl is not None and self.clock() - pending.issued_at > self.challenge_ttl:
            return "CAPTCHA expired. Please try again."
        if not answers_match(solution, pending.expected_answer):
            return message_for("CHALLENGE_MISMATCH")
        return None

    def _issue_challenge(self, previous: Optional[ChallengeState] = None) -> ChallengeState:
        # callers hold self._lock
        code = generate_code(self.rng)
        if previous is not None:
            while answers_match(code, previous.expected_answer):
                code = generate_code(self.rng)
        challenge = ChallengeState(
            image_reference=f"{self.image_base}{code}",
            session_id=f"sess_{uuid.uuid4().hex}",
            expected_answer=code,
            issued_at=self.clock(),
        )
        self._challenge = challenge
        return challenge

    def _fetch(self, query: CaseQuery) -> SearchOutcome:
        logger.info("Fetching case %s from %s", query.display_number, query.court)
        try:
            details = self.source.fetch_case(query)
        except TimeoutError:
            logger.warning("Case source timed out for %s", query.display_number)
            return SearchOutcome(
                status="error",
                reason=TIMEOUT_REASON,
                error_code="UPSTREAM_FAILURE",
                retryable=True,
                query=query,
            )
        except CaseQueryError as e:
            logger.warning("Case source failed for %s: %s", query.display_number, e)
            return SearchOutcome(
                status="error",
                reason=e.message,
                error_code="UPSTREAM_FAILURE",
                retryable=True,
                query=query,
            )
        except Exception as e:
            logger.exception("Lookup failed")
            return SearchOutcome(
                status="error",
                reason=str(e) or message_for("UPSTREAM_FAILURE"),
                error_code="UPSTREAM_FAILURE",
                retryable=True,
                query=query,
            )
        logger.info("Case %s retrieved", query.display_number)
        return SearchOutcome(status="ok", data=details, query=query)


def _failure(error: CaseQueryError, **extra) -> SearchOutcome:
    return SearchOutcome(
        status="error",
        reason=error.message,
        error_code=error.code,
        retryable=error.retryable,
        **extra,
    )


# ---------- per-client orchestrators ----------
DEFAULT_CLIENT = "default"
DEFAULT_MAX_CLIENTS = 1000


class OrchestratorRegistry:
    """
    One orchestrator per client id, so concurrent users never share a
    challenge slot. Requests without a client id deliberately share the
    DEFAULT_CLIENT orchestrator. At most max_clients are kept; the least
    recently used one is dropped along with its pending challenge.
    """

    def __init__(
        self,
        factory: Callable[[], CaseQueryOrchestrator],
        max_clients: int = DEFAULT_MAX_CLIENTS,
    ):
        self.factory = factory
        self.max_clients = max(1, max_clients)
        self._orchestrators: "OrderedDict[str, CaseQueryOrchestrator]" = OrderedDict()
        self._lock = threading.Lock()

    def for_client(self, client_id: Optional[str] = None) -> CaseQueryOrchestrator:
        key = client_id or DEFAULT_CLIENT
        with self._lock:
            orchestrator = self._orchestrators.get(key)
            if orchestrator is None:
                orchestrator = self.factory()
                self._orchestrators[key] = orchestrator
                while len(self._orchestrators) > self.max_clients:
                    evicted, _ = self._orchestrators.popitem(last=False)
                    logger.info("Evicted idle client session %s", evicted)
            else:
                self._orchestrators.move_to_end(key)
            return orchestrator

    def __len__(self) -> int:
        return len(self._orchestrators)
