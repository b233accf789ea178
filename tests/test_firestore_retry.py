from __future__ import annotations

import pytest
from google.api_core import exceptions as gexc

from portal.persistence.firestore_retry import with_firestore_retry


def test_transient_errors_are_retried_until_success():
    calls = {"n": 0}
    sleeps: list[float] = []

    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise gexc.ServiceUnavailable("try again")
        return "ok"

    assert with_firestore_retry(flaky, sleep=sleeps.append) == "ok"
    assert calls["n"] == 3
    assert len(sleeps) == 2


def test_gives_up_after_max_attempts():
    calls = {"n": 0}

    def always_aborted():
        calls["n"] += 1
        raise gexc.Aborted("contention")

    with pytest.raises(gexc.Aborted):
        with_firestore_retry(always_aborted, max_attempts=3, sleep=lambda _s: None)
    assert calls["n"] == 3


def test_permanent_errors_are_not_retried():
    calls = {"n": 0}

    def denied():
        calls["n"] += 1
        raise gexc.PermissionDenied("no")

    with pytest.raises(gexc.PermissionDenied):
        with_firestore_retry(denied, sleep=lambda _s: None)
    assert calls["n"] == 1
