import pytest

from bizcrawler.browser import SessionPool
from bizcrawler.errors import AnalysisUnavailable, NonRetryableRequestError, RenderFailure
from bizcrawler.models import CrawlRequest
from bizcrawler.retry import Retry, RetrySessionPolicy, Terminal

URL = "https://example.com/"


def _request():
    return CrawlRequest(url=URL, origin_domain="example.com", unique_key=URL)


def _policy(**kwargs):
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("jitter", 0)
    return RetrySessionPolicy(SessionPool(), **kwargs)


def _timeout():
    return RenderFailure("slow", kind=RenderFailure.TIMEOUT, url=URL)


def test_success_is_terminal():
    request = _request()
    decision = _policy().on_attempt_result(request, None)
    assert decision == Terminal(success=True)
    assert request.attempt_count == 1


def test_attempts_never_exceed_ceiling():
    policy = _policy(max_attempts=3)
    request = _request()
    decisions = []
    while not decisions or isinstance(decisions[-1], Retry):
        policy.bind_session(request)
        decisions.append(policy.on_attempt_result(request, AnalysisUnavailable("down", "")))
        assert request.attempt_count <= 3

    assert [type(d) for d in decisions] == [Retry, Retry, Terminal]
    assert decisions[-1].success is False
    assert isinstance(decisions[-1].error, AnalysisUnavailable)


def test_analysis_unavailable_keeps_session():
    policy = _policy()
    request = _request()
    policy.bind_session(request)
    session = request.session_id

    decision = policy.on_attempt_result(request, AnalysisUnavailable("down", ""))

    assert decision.with_new_session is False
    assert request.session_id == session


def test_crash_always_forces_new_session():
    pool = SessionPool(["http://user:pw@proxy-1:8000", "http://proxy-2:8000"])
    policy = RetrySessionPolicy(pool, base_delay=0, jitter=0)
    request = _request()
    policy.bind_session(request)
    first = request.session_id
    assert pool.proxy_for(first) == {"server": "http://proxy-1:8000", "username": "user", "password": "pw"}

    decision = policy.on_attempt_result(request, RenderFailure("boom", kind=RenderFailure.CRASH, url=URL))

    assert decision.with_new_session is True
    assert request.session_id is None
    assert pool.proxy_for(first) is None
    policy.bind_session(request)
    assert request.session_id != first
    assert pool.proxy_for(request.session_id) == {"server": "http://proxy-2:8000"}


def test_timeout_escalates_to_new_session_on_second_failure():
    policy = _policy(max_attempts=5)
    request = _request()
    policy.bind_session(request)

    assert policy.on_attempt_result(request, _timeout()).with_new_session is False
    assert policy.on_attempt_result(request, _timeout()).with_new_session is True


def test_blocked_status_rotates_session():
    decision = _policy().on_attempt_result(
        _request(), RenderFailure("403", kind=RenderFailure.BLOCKED, url=URL, status_code=403)
    )
    assert decision.with_new_session is True


@pytest.mark.parametrize("error", [
    RenderFailure("502", kind=RenderFailure.HTTP, url=URL, status_code=502),
    RenderFailure("reset", kind=RenderFailure.NAVIGATION, url=URL),
    RuntimeError("unexpected"),
])
def test_other_transient_failures_retry_on_same_session(error):
    decision = _policy().on_attempt_result(_request(), error)
    assert decision == Retry(with_new_session=False, delay=0)


def test_non_retryable_is_terminal_immediately():
    request = _request()
    decision = _policy().on_attempt_result(request, NonRetryableRequestError("bad", URL))
    assert isinstance(decision, Terminal) and decision.success is False
    assert request.attempt_count == 1


def test_backoff_grows_and_is_capped():
    policy = RetrySessionPolicy(base_delay=1.0, max_delay=5.0, jitter=0)
    assert [policy.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_backoff_jitter_is_bounded():
    policy = RetrySessionPolicy(base_delay=1.0, jitter=0.5)
    assert all(1.0 <= policy.backoff_delay(1) <= 1.5 for _ in range(20))


def test_timeout_after_other_failure_keeps_session():
    policy = _policy(max_attempts=5)
    request = _request()
    policy.bind_session(request)
    session = request.session_id

    assert policy.on_attempt_result(request, RuntimeError("model hiccup")).with_new_session is False
    assert policy.on_attempt_result(request, _timeout()).with_new_session is False
    assert request.session_id == session
    assert policy.on_attempt_result(request, _timeout()).with_new_session is True
    assert request.timeout_count == 2
