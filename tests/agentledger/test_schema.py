"""Tests for record validation."""

from __future__ import annotations

import pytest

from agentledger.schema import KNOWN_VERSIONS, MEMO_VERSION, is_valid_memo, memo_errors

VALID = {"v": "1", "agent": "bot", "action": "ping", "ts": 1_700_000_000}


class TestIsValidMemo:
    def test_minimal_record(self) -> None:
        assert is_valid_memo(VALID)
        assert memo_errors(VALID) == []

    def test_with_data(self) -> None:
        assert is_valid_memo({**VALID, "data": {"k": 1}})

    def test_empty_action_allowed(self) -> None:
        assert is_valid_memo({**VALID, "action": ""})

    @pytest.mark.parametrize("field", ["v", "agent", "action", "ts"])
    def test_missing_required_field(self, field: str) -> None:
        record = {k: v for k, v in VALID.items() if k != field}
        assert not is_valid_memo(record)
        assert memo_errors(record) == [f"Missing required field: {field}"]

    def test_wrong_version(self) -> None:
        errors = memo_errors({**VALID, "v": "2"})
        assert errors == ["Unsupported memo version: '2'"]

    def test_numeric_version_rejected(self) -> None:
        assert not is_valid_memo({**VALID, "v": 1})

    @pytest.mark.parametrize("version", [["1"], {"v": "1"}, None])
    def test_unhashable_or_null_version_rejected(self, version: object) -> None:
        assert memo_errors({**VALID, "v": version}) == [f"Unsupported memo version: {version!r}"]

    def test_versions_come_from_registry(self) -> None:
        assert KNOWN_VERSIONS == {MEMO_VERSION}
        for version in KNOWN_VERSIONS:
            assert is_valid_memo({**VALID, "v": version})

    @pytest.mark.parametrize(
        "field,value",
        [
            ("agent", ""),
            ("agent", 42),
            ("action", None),
            ("ts", "1700000000"),
            ("ts", 1.5),
            ("ts", True),
            ("data", [1, 2]),
            ("data", "text"),
        ],
    )
    def test_bad_field_types(self, field: str, value: object) -> None:
        errors = memo_errors({**VALID, field: value})
        assert len(errors) == 1
        assert field in errors[0]

    def test_not_an_object(self) -> None:
        assert not is_valid_memo(["v", "agent"])
        assert not is_valid_memo(None)
        assert not is_valid_memo("memo")

    def test_reports_every_problem(self) -> None:
        errors = memo_errors({"v": "9", "agent": "", "action": 3, "ts": "x"})
        assert len(errors) == 4
