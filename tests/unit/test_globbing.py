import pytest

from logscan.domain.globbing import glob_to_regex, matches_includes


@pytest.mark.parametrize("path,includes,expected", [
    ("server.log", [], True),
    ("a/b/server.log", ["*.log"], True),
    ("a/b/server.txt", ["*.log"], False),
    ("server.log", ["**/*.log"], True),
    ("a/b/server.log", ["**/*.log"], True),
    ("a/server.log", ["a/*.log"], True),
    ("a/b/server.log", ["a/*.log"], False),
    ("a/b/server.log", ["a/**/*.log"], True),
    ("server.log.1", ["*.log.[0-9]"], True),
    ("server.log.x", ["*.log.[0-9]"], False),
    ("server.log.x", ["*.log.[!0-9]"], True),
    ("app1.log", ["app?.log"], True),
    ("app12.log", ["app?.log"], False),
    ("access.log", ["*.txt", "access.*"], True),
])
def test_matches_includes(path, includes, expected):
    assert matches_includes(path, includes) is expected


def test_star_does_not_cross_directories():
    assert glob_to_regex("a/*").match("a/b") is not None
    assert glob_to_regex("a/*").match("a/b/c") is None


def test_backslashes_are_normalised():
    assert matches_includes("logs\\app\\server.log", ["logs/app/*.log"]) is True


def test_leading_slash_is_ignored():
    assert matches_includes("/logs/server.log", ["logs/*.log"]) is True


def test_regex_metacharacters_are_literal():
    assert matches_includes("a+b.log", ["a+b.log"]) is True
    assert matches_includes("aab.log", ["a+b.log"]) is False
