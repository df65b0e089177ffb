import random
import threading

import pytest

from errors import UpstreamFailure
from orchestrator import (
    CAPTCHA_ALPHABET,
    CAPTCHA_LENGTH,
    DEFAULT_CLIENT,
    DEFAULT_IMAGE_BASE,
    TIMEOUT_REASON,
    CaseQueryOrchestrator,
    OrchestratorRegistry,
    OrchestratorState,
    RandomVerificationPolicy,
    always_challenge,
    answers_match,
    generate_code,
    never_challenge,
    requires_challenge,
)
from courts import DEFAULT_REGISTRY
from schemas import CaseQuery
from tests.conftest import FailingSource, ManualClock


class ScriptedRng:
    """choice() walks through a fixed string of characters."""

    def __init__(self, chars: str):
        self.chars = iter(chars)

    def choice(self, seq):
        return next(self.chars)


def _challenge(orchestrator, query):
    outcome = orchestrator.search(query)
    assert outcome.status == "challenge"
    return outcome, orchestrator.pending_challenge.expected_answer


# ---------- no challenge ----------

def test_no_challenge_policy_returns_terminal_result(make_orchestrator, query):
    orch = make_orchestrator(policy=never_challenge)

    outcome = orch.search(query)

    assert outcome.status == "ok"
    assert outcome.terminal
    assert outcome.data.case_number == "1234/2023"
    assert orch.pending_challenge is None
    assert orch.state is OrchestratorState.IDLE


# ---------- challenge issuance ----------

def test_forced_challenge_without_solution_is_pending(make_orchestrator, mock_source, query):
    orch = make_orchestrator(policy=always_challenge)

    outcome = orch.search(query)

    assert outcome.status == "challenge"
    assert not outcome.terminal
    assert outcome.error_code == "CHALLENGE_REQUIRED"
    assert outcome.session_id.startswith("sess_")
    assert orch.state is OrchestratorState.CHALLENGE_PENDING
    code = orch.pending_challenge.expected_answer
    assert len(code) == CAPTCHA_LENGTH
    assert set(code) <= set(CAPTCHA_ALPHABET)
    assert outcome.image_reference.endswith(code)


def test_challenge_response_does_not_expose_answer(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge)

    dumped = orch.search(query).model_dump(by_alias=True)

    assert dumped["status"] == "challenge"
    assert "expectedAnswer" not in str(dumped)


def test_new_challenge_invalidates_previous(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge, rng=ScriptedRng("AAAAA" "BBBBB" "CCCCC"))
    first, first_code = _challenge(orch, query)
    second, second_code = _challenge(orch, query)

    assert (first_code, second_code) == ("AAAAA", "BBBBB")
    assert first.session_id != second.session_id
    assert orch.search(query, first_code).error_code == "CHALLENGE_MISMATCH"


# ---------- solution checking ----------

@pytest.mark.parametrize("transform", [
    lambda c: c,
    lambda c: c.lower(),
    lambda c: f"  {c}  ",
    lambda c: f"\t{c.lower()}\n",
])
def test_correct_solution_clears_challenge_and_fetches(make_orchestrator, query, transform):
    orch = make_orchestrator(policy=always_challenge)
    _, code = _challenge(orch, query)

    outcome = orch.search(query, transform(code))

    assert outcome.status == "ok"
    assert orch.pending_challenge is None
    assert orch.state is OrchestratorState.IDLE


def test_wrong_solution_yields_fresh_challenge(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge)
    first, code = _challenge(orch, query)

    outcome = orch.search(query, "WRONG")

    assert outcome.status == "error"
    assert outcome.terminal
    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert outcome.retryable
    assert outcome.session_id and outcome.session_id != first.session_id
    assert outcome.image_reference == orch.pending_challenge.image_reference
    assert orch.state is OrchestratorState.CHALLENGE_PENDING
    assert orch.pending_challenge.expected_answer != code


def test_consumed_challenge_cannot_be_replayed(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge, rng=ScriptedRng("AAAAA" "BBBBB" "CCCCC"))
    _, code = _challenge(orch, query)
    orch.search(query, "WRONG")
    assert orch.pending_challenge.expected_answer == "BBBBB"

    outcome = orch.search(query, code)

    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert orch.pending_challenge.expected_answer == "CCCCC"


def test_mismatch_never_repeats_code(mock_source, query):
    # second draw repeats the first code, so a third draw is needed
    orch = CaseQueryOrchestrator(
        mock_source, policy=always_challenge, rng=ScriptedRng("AAAAA" "AAAAA" "BBBBB")
    )
    _, code = _challenge(orch, query)
    assert code == "AAAAA"

    outcome = orch.search(query, "ZZZZZ")

    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert orch.pending_challenge.expected_answer == "BBBBB"


def test_solution_without_pending_challenge_is_mismatch(make_orchestrator, query):
    orch = make_orchestrator(policy=never_challenge)

    outcome = orch.search(query, "ABCDE")

    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert orch.state is OrchestratorState.CHALLENGE_PENDING


def test_expired_challenge_is_rejected(make_orchestrator, query):
    clock = ManualClock()
    orch = make_orchestrator(policy=always_challenge, challenge_ttl=60, clock=clock)
    _, code = _challenge(orch, query)
    clock.advance(61)

    outcome = orch.search(query, code)

    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert "expired" in outcome.reason
    assert orch.state is OrchestratorState.CHALLENGE_PENDING


def test_challenge_within_ttl_is_accepted(make_orchestrator, query):
    clock = ManualClock()
    orch = make_orchestrator(policy=always_challenge, challenge_ttl=60, clock=clock)
    _, code = _challenge(orch, query)
    clock.advance(59)

    assert orch.search(query, code).status == "ok"


# ---------- validation ----------

@pytest.mark.parametrize("changes,code", [
    ({"case_number": "12A4"}, "VALIDATION_ERROR"),
    ({"case_number": ""}, "VALIDATION_ERROR"),
    ({"filing_year": "23"}, "VALIDATION_ERROR"),
    ({"case_type": "   "}, "VALIDATION_ERROR"),
    ({"court": "Bombay High Court"}, "UNKNOWN_COURT"),
    ({"case_type": "Recovery"}, "UNKNOWN_CASE_TYPE"),
])
def test_invalid_query_rejected_before_challenge(make_orchestrator, query, changes, code):
    calls = []

    def policy(q, court):
        calls.append(q)
        return True

    orch = make_orchestrator(policy=policy)
    bad = query.model_copy(update=changes)

    outcome = orch.search(bad)

    assert outcome.status == "error"
    assert outcome.error_code == code
    assert not outcome.retryable
    assert calls == []
    assert orch.state is OrchestratorState.IDLE


def test_invalid_query_leaves_pending_challenge_untouched(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge)
    _challenge(orch, query)
    pending = orch.pending_challenge

    orch.search(query.model_copy(update={"case_number": "12A4"}), "ANY")

    assert orch.pending_challenge is pending


# ---------- upstream ----------

def test_upstream_failure_is_retryable_and_keeps_query(make_orchestrator, failing_source, query):
    orch = make_orchestrator(source=failing_source)

    outcome = orch.search(query)

    assert outcome.status == "error"
    assert outcome.error_code == "UPSTREAM_FAILURE"
    assert outcome.retryable
    assert outcome.reason == "Court website returned HTTP 503"
    assert outcome.query == query


def test_unexpected_source_exception_is_contained(make_orchestrator, query):
    orch = make_orchestrator(source=FailingSource(RuntimeError("selector not found")))

    outcome = orch.search(query)

    assert outcome.error_code == "UPSTREAM_FAILURE"
    assert outcome.reason == "selector not found"


def test_source_timeout_reports_timeout(make_orchestrator, query):
    orch = make_orchestrator(source=FailingSource(TimeoutError()))

    outcome = orch.search(query)

    assert outcome.error_code == "UPSTREAM_FAILURE"
    assert outcome.reason == TIMEOUT_REASON


def test_fetch_runs_outside_the_challenge_lock(query):
    seen = []

    class LockCheckingSource:
        def fetch_case(self, q):
            seen.append(orch._lock.locked())
            raise UpstreamFailure("portal unavailable")

    orch = CaseQueryOrchestrator(LockCheckingSource(), policy=never_challenge)
    orch.search(query)

    assert seen == [False]


# ---------- policy ----------

def test_requires_challenge_is_pure(query, district_query):
    sensitive = {"Civil Appeal"}
    assert requires_challenge(query, sensitive, 0.0, 0.99)
    assert not requires_challenge(district_query, sensitive, 0.3, 0.5)
    assert requires_challenge(district_query, sensitive, 0.3, 0.1)


def test_random_policy_is_seedable(district_query):
    court = DEFAULT_REGISTRY.get(district_query.court)
    a = RandomVerificationPolicy(probability=0.3, rng=random.Random(3))
    b = RandomVerificationPolicy(probability=0.3, rng=random.Random(3))

    assert [a(district_query, court) for _ in range(20)] == \
        [b(district_query, court) for _ in range(20)]


def test_bypass_court_never_challenges(query):
    court = DEFAULT_REGISTRY.get(query.court).model_copy(update={"captcha_strategy": "bypass"})
    policy = RandomVerificationPolicy(probability=1.0)

    assert policy(query, court) is False


def test_generate_code_and_matching():
    code = generate_code(random.Random(1))

    assert len(code) == 5
    assert answers_match(f" {code.lower()} ", code)
    assert not answers_match(code[:-1], code)


# ---------- scenarios ----------

def test_scenario_challenge_then_correct_code(make_orchestrator):
    orch = make_orchestrator(policy=always_challenge)
    q = CaseQuery.model_validate({
        "court": "Delhi High Court",
        "caseType": "Civil Appeal",
        "caseNumber": "1234",
        "filingYear": "2023",
    })

    first = orch.search(q).model_dump(by_alias=True)
    assert first["status"] == "challenge"
    assert first["sessionId"]

    second = orch.search(q, orch.pending_challenge.expected_answer).model_dump(by_alias=True)
    assert second["status"] == "ok"
    assert second["data"]["caseNumber"] == "1234/2023"


def test_scenario_bad_case_number(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge)

    outcome = orch.search(query.model_copy(update={"case_number": "12A4"}))

    assert outcome.error_code == "VALIDATION_ERROR"
    assert orch.pending_challenge is None


# ---------- registry ----------

def test_registry_isolates_clients(make_orchestrator, query):
    registry = OrchestratorRegistry(lambda: make_orchestrator(policy=always_challenge))
    alice = registry.for_client("alice")
    bob = registry.for_client("bob")

    alice.search(query)

    assert alice is not bob
    assert alice.state is OrchestratorState.CHALLENGE_PENDING
    assert bob.state is OrchestratorState.IDLE
    assert registry.for_client("alice") is alice


def test_registry_shares_default_client(make_orchestrator):
    registry = OrchestratorRegistry(make_orchestrator)

    assert registry.for_client(None) is registry.for_client(DEFAULT_CLIENT)
    assert len(registry) == 1


def test_registry_creates_one_orchestrator_per_client_under_contention(make_orchestrator):
    registry = OrchestratorRegistry(make_orchestrator)
    results = []

    def worker():
        results.append(registry.for_client("shared"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(o) for o in results}) == 1


def test_registry_drops_least_recently_used_client(make_orchestrator):
    registry = OrchestratorRegistry(make_orchestrator, max_clients=3)
    a = registry.for_client("a")
    registry.for_client("b")
    registry.for_client("c")
    registry.for_client("a")  # a is now most recent

    registry.for_client("d")

    assert len(registry) == 3
    assert registry.for_client("a") is a
    assert len(registry) == 3


def test_registry_cap_holds_for_many_clients(make_orchestrator, query):
    registry = OrchestratorRegistry(lambda: make_orchestrator(policy=always_challenge), max_clients=50)

    for n in range(500):
        registry.for_client(f"client-{n}").search(query)

    assert len(registry) == 50


# ---------- concurrent searches on one orchestrator ----------

def _race_for_challenges(orch, query, workers=8):
    barrier = threading.Barrier(workers)
    outcomes = []

    def worker():
        barrier.wait()
        outcomes.append(orch.search(query))

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


def _code_of(outcome):
    return outcome.image_reference[len(DEFAULT_IMAGE_BASE):]


DISTINCT_CODES = "".join(ch * 5 for ch in "ABCDEFGHIJKL")


def test_concurrent_challenges_leave_exactly_one_live(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge, rng=ScriptedRng(DISTINCT_CODES))

    outcomes = _race_for_challenges(orch, query)

    assert all(o.status == "challenge" for o in outcomes)
    assert len({o.session_id for o in outcomes}) == len(outcomes)
    live = orch.pending_challenge
    assert live.session_id in {o.session_id for o in outcomes}
    assert orch.search(query, live.expected_answer).status == "ok"
    assert orch.state is OrchestratorState.IDLE


def test_concurrent_challenges_reject_superseded_codes(make_orchestrator, query):
    orch = make_orchestrator(policy=always_challenge, rng=ScriptedRng(DISTINCT_CODES))

    outcomes = _race_for_challenges(orch, query)

    live = orch.pending_challenge
    superseded = [_code_of(o) for o in outcomes if o.session_id != live.session_id]
    assert len(superseded) == len(outcomes) - 1
    assert live.expected_answer not in superseded

    outcome = orch.search(query, superseded[0])

    assert outcome.error_code == "CHALLENGE_MISMATCH"
    assert orch.pending_challenge.expected_answer not in superseded
