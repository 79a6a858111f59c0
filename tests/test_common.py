import datetime as _dt
from decimal import Decimal
from itertools import chain, repeat

import pytest

from common import codes
from common import secrets as secrets_module
from common.auth import Identity, require_token
from common.config import env_bool, env_decimal, env_int
from common.datetime import parse_iso8601
from common.errors import InsufficientFunds, NotFound, PersistenceError
from common.money import money, percent, quantity, to_decimal
from common.secrets import api_tokens, jwt_secret
from ledger.models import Classroom
from tests.test_helpers import TEACHER_ID, student_headers, teacher_headers


@pytest.mark.parametrize(
    "s,expected",
    [
        ("2025-08-27T12:00:00Z", _dt.datetime(2025, 8, 27, 12, 0, 0)),
        ("2025-08-27T12:00:00+00:00", _dt.datetime(2025, 8, 27, 12, 0, 0)),
        ("2025-08-27T07:00:00-05:00", _dt.datetime(2025, 8, 27, 12, 0, 0)),
        ("2025-08-27T12:00:00.123456Z", _dt.datetime(2025, 8, 27, 12, 0, 0, 123456)),
    ],
)
def test_parse_iso8601_returns_naive_utc(s, expected):
    assert parse_iso8601(s) == expected


def test_parse_iso8601_rejects_garbage():
    with pytest.raises(ValueError):
        parse_iso8601("last tuesday")
    with pytest.raises(TypeError):
        parse_iso8601(12345)


def test_money_rounds_half_up():
    assert money("2.345") == Decimal("2.35")
    assert money(0.1 + 0.2) == Decimal("0.30")
    assert quantity("0.123456785") == Decimal("0.12345679")
    assert to_decimal(1.1) == Decimal("1.1")
    with pytest.raises(ValueError):
        to_decimal("abc")


def test_percent_of_zero_is_zero():
    assert percent(Decimal("5"), Decimal("0")) == Decimal("0.00")
    assert percent(Decimal("1"), Decimal("3")) == Decimal("33.33")


def test_error_body_carries_code_and_context():
    err = InsufficientFunds("not enough", required=Decimal("10.00"))
    assert err.as_dict() == {
        "error": "insufficient_funds",
        "detail": "not enough",
        "context": {"required": "10.00"},
    }
    assert NotFound("x").http_status == 404


def test_env_helpers_fall_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("FLAG", "yes")
    monkeypatch.setenv("COUNT", "many")
    monkeypatch.setenv("PRICE", "cheap")
    assert env_bool("FLAG") is True
    assert env_int("COUNT", 3) == 3
    assert env_decimal("PRICE", "100") == Decimal("100")


def test_unique_code_retries_after_collision(session, monkeypatch):
    candidates = chain(["AAAAAA", "AAAAAA", "BBBBBB"], repeat("CCCCCC"))
    monkeypatch.setattr(codes, "random_code", lambda length=6: next(candidates))

    first = codes.generate_unique_code(session, lambda c: Classroom(teacher_id="t-a", code=c))
    second = codes.generate_unique_code(session, lambda c: Classroom(teacher_id="t-b", code=c))
    session.commit()

    assert first.code == "AAAAAA"
    assert second.code == "BBBBBB"


def test_unique_code_gives_up(session, monkeypatch):
    monkeypatch.setattr(codes, "random_code", lambda length=6: "ZZZZZZ")
    codes.generate_unique_code(session, lambda c: Classroom(teacher_id="t-a", code=c))
    with pytest.raises(PersistenceError):
        codes.generate_unique_code(
            session, lambda c: Classroom(teacher_id="t-b", code=c), attempts=3
        )


def test_jwt_secret_falls_back_to_environment(monkeypatch):
    secrets_module.secrets.set_override({"API_TOKENS": ["not", "a", "mapping"]})
    monkeypatch.setenv("CLASSROOM_JWT_SECRET", "from-env")
    assert jwt_secret() == "from-env"
    assert api_tokens() == {}


def test_shared_headers_resolve_to_identities():
    assert require_token(teacher_headers()["Authorization"]) == Identity(TEACHER_ID)
    assert require_token(student_headers("s-1")["Authorization"]) == Identity(TEACHER_ID, "s-1")
