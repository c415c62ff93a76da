"""Tests for check expressions and check evaluation."""

from __future__ import annotations

import pytest

from stampede._internal.errors import CheckFailure, ConfigError
from stampede.engine.executor import HttpResponse, evaluate_checks
from stampede.metrics.models import CheckStatus
from stampede.options.checks import Check, build_checks, parse_check, status_is


def _response(status: int = 200, latency_ms: float = 12.0) -> HttpResponse:
    return HttpResponse(status=status, headers={}, body=b"{}", latency_ms=latency_ms)


class TestParseCheck:
    def test_status_equality(self):
        check = parse_check("status == 200")
        assert check.name == "status == 200"
        assert check.predicate(_response(200)) is True
        assert check.predicate(_response(503)) is False

    def test_normalizes_spacing(self):
        assert parse_check("  status!=500 ").name == "status != 500"

    @pytest.mark.parametrize(
        ("expression", "latency", "expected"),
        [
            ("latency_ms < 500", 120.0, True),
            ("latency_ms < 500", 500.0, False),
            ("latency_ms <= 500", 500.0, True),
            ("latency_ms > 10.5", 11.0, True),
            ("latency_ms >= 20", 19.9, False),
        ],
    )
    def test_latency_comparisons(self, expression: str, latency: float, expected: bool):
        assert parse_check(expression).predicate(_response(latency_ms=latency)) is expected

    def test_custom_name(self):
        assert parse_check("status == 200", name="ok").name == "ok"

    @pytest.mark.parametrize(
        "expression",
        ["status = 200", "body == 1", "status == ok", "", "status == 200 and more"],
    )
    def test_invalid(self, expression: str):
        with pytest.raises(ConfigError, match="Invalid check expression"):
            parse_check(expression)


class TestBuildChecks:
    def test_none(self):
        assert build_checks(None) == ()

    def test_list_of_strings_and_checks(self):
        custom = status_is(201)
        checks = build_checks(["status == 200", custom])
        assert [c.name for c in checks] == ["status == 200", "status 201"]
        assert checks[1] is custom

    def test_mapping(self):
        checks = build_checks({"ok": "status == 200", "fast": "latency_ms < 100"})
        assert [c.name for c in checks] == ["ok", "fast"]

    def test_duplicate_names(self):
        with pytest.raises(ConfigError, match="Duplicate check name"):
            build_checks(["status == 200", "status==200"])

    def test_mapping_value_must_be_string(self):
        with pytest.raises(ConfigError):
            build_checks({"ok": 200})

    def test_wrong_container(self):
        with pytest.raises(ConfigError, match="list or mapping"):
            build_checks("status == 200")


class TestEvaluateChecks:
    def test_all_pass(self):
        overall, per_check = evaluate_checks([status_is(200)], _response(200))
        assert overall is CheckStatus.PASS
        assert per_check == (("status 200", CheckStatus.PASS),)

    def test_no_checks_is_pass(self):
        overall, per_check = evaluate_checks([], _response(500))
        assert overall is CheckStatus.PASS
        assert per_check == ()

    def test_failure_does_not_short_circuit(self):
        calls: list[str] = []

        def _track(name: str, result: bool) -> Check:
            def _predicate(_r: HttpResponse) -> bool:
                calls.append(name)
                return result

            return Check(name=name, predicate=_predicate)

        overall, per_check = evaluate_checks(
            [_track("first", False), _track("second", True)], _response()
        )

        assert calls == ["first", "second"]
        assert overall is CheckStatus.FAIL
        assert dict(per_check) == {"first": CheckStatus.FAIL, "second": CheckStatus.PASS}

    def test_check_failure_counts_as_fail(self):
        def _raise(_r: HttpResponse) -> bool:
            raise CheckFailure("body mismatch")

        overall, per_check = evaluate_checks([Check("body", _raise)], _response())
        assert overall is CheckStatus.FAIL
        assert per_check == (("body", CheckStatus.FAIL),)

    def test_unexpected_exception_is_error(self):
        def _boom(_r: HttpResponse) -> bool:
            raise KeyError("missing")

        overall, per_check = evaluate_checks(
            [Check("boom", _boom), Check("fails", lambda _r: False)], _response()
        )
        assert overall is CheckStatus.ERROR
        assert dict(per_check) == {"boom": CheckStatus.ERROR, "fails": CheckStatus.FAIL}
