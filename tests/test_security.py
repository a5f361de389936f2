import pytest

from app.core.exceptions import UnauthorizedError
from app.core.money import to_amount
from app.core.security import body_digest, require_shared_token, verify_uppromote_signature
from app.services.idempotency import ProcessedEvents
from conftest import sign


def test_uppromote_signature():
    body = b'{"id": 1}'
    assert verify_uppromote_signature(body, sign(body, "s3cret"), "s3cret")
    assert not verify_uppromote_signature(body, sign(body, "other"), "s3cret")
    assert not verify_uppromote_signature(body + b" ", sign(body, "s3cret"), "s3cret")
    assert not verify_uppromote_signature(body, None, "s3cret")


def test_shared_token():
    require_shared_token("abc", "abc")
    require_shared_token(None, "")
    with pytest.raises(UnauthorizedError):
        require_shared_token("abd", "abc")
    with pytest.raises(UnauthorizedError):
        require_shared_token(None, "abc")


def test_body_digest_is_per_source():
    assert body_digest("seal", b"x") == body_digest("seal", b"x")
    assert body_digest("seal", b"x") != body_digest("uppromote", b"x")


def test_processed_events_claim_and_release():
    events = ProcessedEvents(max_entries=2)
    assert events.claim("a")
    assert not events.claim("a")
    events.release("a")
    assert events.claim("a")
    events.claim("b")
    events.claim("c")
    assert "a" not in events
    assert len(events) == 2


@pytest.mark.parametrize("raw,expected", [("12.5", "12.50"), (12, "12.00"), (0.1, "0.10"), ("1.005", "1.01")])
def test_to_amount(raw, expected):
    assert str(to_amount(raw)) == expected


@pytest.mark.parametrize("raw", [None, True, "abc", "inf", ""])
def test_to_amount_rejects(raw):
    with pytest.raises(ValueError):
        to_amount(raw)
