"""Tests for stayopen pytest plugin."""

from __future__ import annotations

import textwrap
import typing as t

if t.TYPE_CHECKING:
    import pytest


def test_plugin(
    pytester: pytest.Pytester,
) -> None:
    """The channel fixture hands out a working channel on the echo tool."""
    pytester.makefile(
        ".ini",
        pytest=textwrap.dedent(
            """
[pytest]
addopts=-vv
        """.strip(),
        ),
    )
    tests_path = pytester.path / "tests"
    files = {
        "example.py": textwrap.dedent(
            """
def test_round_trip(channel) -> None:
    result = channel.execute(["-a", "-b"])
    assert result.stdout == ["ECHO:-a", "ECHO:-b"]
    assert result.stderr == []


def test_argv(echo_tool_argv) -> None:
    assert echo_tool_argv[-2:] == ["-m", "stayopen.test.echo_tool"]
        """,
        ),
    }
    first_test_key = next(iter(files.keys()))
    first_test_filename = str(tests_path / first_test_key)

    tests_path.mkdir()
    for file_name, text in files.items():
        test_file = tests_path / file_name
        test_file.write_text(
            text,
            encoding="utf-8",
        )

    result = pytester.runpytest(str(first_test_filename))
    result.assert_outcomes(passed=2)
