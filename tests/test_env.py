"""Tests for environment parsing and snapshots."""

from __future__ import annotations

import pytest

from fuxi.env import build_ai_env, is_valid_env_key, merge_env, parse_env_pairs, snapshot_env
from fuxi.errors import EnvFormatError, FuxiError


class TestParseEnvPairs:
    """Tests for parse_env_pairs."""

    def test_parses_pairs(self) -> None:
        """Test simple pairs are parsed."""
        assert parse_env_pairs(["FOO=bar", "EMPTY="]) == {"FOO": "bar", "EMPTY": ""}

    def test_value_may_contain_equals(self) -> None:
        """Test only the first = separates key and value."""
        assert parse_env_pairs(["HTTP_PROXY=http://a=b"]) == {"HTTP_PROXY": "http://a=b"}

    def test_missing_equals_raises(self) -> None:
        """Test a pair without = is rejected."""
        with pytest.raises(EnvFormatError, match="BADPAIR"):
            parse_env_pairs(["BADPAIR"])

    def test_empty_key_raises(self) -> None:
        """Test a pair starting with = is rejected."""
        with pytest.raises(EnvFormatError):
            parse_env_pairs(["=value"])

    @pytest.mark.parametrize("pair", ["1ABC=x", "MY-VAR=x", "A B=x", "  =x"])
    def test_invalid_key_raises(self, pair: str) -> None:
        """Test keys that are not legal variable names are rejected."""
        with pytest.raises(EnvFormatError):
            parse_env_pairs([pair])

    def test_key_whitespace_trimmed(self) -> None:
        """Test surrounding whitespace on the key is ignored."""
        assert parse_env_pairs([" FOO =bar"]) == {"FOO": "bar"}

    def test_later_pairs_win(self) -> None:
        """Test duplicate keys keep the last value."""
        assert parse_env_pairs(["A=1", "A=2"]) == {"A": "2"}

    def test_error_is_fuxi_error(self) -> None:
        """Test the error derives from the package base error."""
        with pytest.raises(FuxiError):
            parse_env_pairs(["nope"])


class TestEnvHelpers:
    """Tests for env helpers."""

    def test_is_valid_env_key(self) -> None:
        """Test key validation."""
        assert is_valid_env_key("_PRIVATE")
        assert is_valid_env_key("A1")
        assert not is_valid_env_key("")
        assert not is_valid_env_key("9A")

    def test_merge_env(self) -> None:
        """Test later mappings override earlier ones."""
        assert merge_env({"A": "1", "B": "1"}, {"B": "2"}, {"C": "3"}) == {"A": "1", "B": "2", "C": "3"}

    def test_snapshot_is_read_only(self) -> None:
        """Test the snapshot cannot be mutated and ignores later source changes."""
        source = {"HOME": "/home/dev"}
        snapshot = snapshot_env(source)
        source["HOME"] = "/elsewhere"

        assert snapshot["HOME"] == "/home/dev"
        with pytest.raises(TypeError):
            snapshot["HOME"] = "/tmp"  # type: ignore[index]

    def test_snapshot_defaults_to_process_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the process environment is captured when no base is given."""
        monkeypatch.setenv("FUXI_TEST_MARKER", "1")

        assert snapshot_env()["FUXI_TEST_MARKER"] == "1"

    def test_build_ai_env(self) -> None:
        """Test overrides are layered over the snapshot without mutating it."""
        snapshot = snapshot_env({"PATH": "/bin", "MODEL": "a"})
        env = build_ai_env(snapshot, {"MODEL": "b"})

        assert env == {"PATH": "/bin", "MODEL": "b"}
        assert snapshot["MODEL"] == "a"
        assert build_ai_env(snapshot) == {"PATH": "/bin", "MODEL": "a"}
