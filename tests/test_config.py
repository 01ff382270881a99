"""Tests for CLI parsing and RunConfig."""

from __future__ import annotations

from pathlib import Path

import pytest

from fzcopy import (
    ConfigBuilder,
    InvalidIgnorePattern,
    OutputMode,
    create_parser,
)


def _config(*argv: str):
    return ConfigBuilder.from_args(create_parser().parse_args(list(argv)))


def test_defaults_are_interactive_full_bundle():
    config = _config()
    assert config.interactive
    assert config.target is None
    assert config.ignore is None
    assert config.output_mode == OutputMode.FULL
    assert not config.quiet
    assert not config.force_print
    assert config.may_copy


def test_positional_path_is_non_interactive():
    config = _config("src")
    assert not config.interactive
    assert config.target == Path("src")


def test_short_and_long_flags():
    config = _config("-t", "-q", "-p", "--debug", "-i", r"\.lock$", "docs")
    assert config.output_mode == OutputMode.TREE_ONLY
    assert config.quiet
    assert config.force_print
    assert config.debug
    assert config.ignore is not None
    assert config.ignore.search("poetry.lock")
    assert not config.ignore.search("poetry.lock.txt")

    long_form = _config("--tree-only", "--quiet", "--print", "--ignore", "x", "docs")
    assert long_form.output_mode == OutputMode.TREE_ONLY
    assert long_form.quiet and long_form.force_print


def test_ignore_is_case_sensitive_and_unanchored():
    config = _config("-i", "test")
    assert config.ignore.search("src/tests/helpers.py")
    assert not config.ignore.search("src/Tests/helpers.py")


def test_invalid_ignore_pattern():
    with pytest.raises(InvalidIgnorePattern, match="Invalid ignore pattern"):
        _config("-i", "(unclosed")


def test_quiet_direct_run_never_copies():
    assert not _config("-q", "src").may_copy
    assert not _config("-q", "-p", "src").may_copy
    assert _config("src").may_copy
    # The interactive path copies even when quiet
    assert _config("-q").may_copy


def test_config_is_immutable():
    config = _config()
    with pytest.raises(AttributeError):
        config.quiet = True  # type: ignore[misc]


def test_version_flag(capsys: pytest.CaptureFixture[str]):
    with pytest.raises(SystemExit) as excinfo:
        create_parser().parse_args(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.startswith("fzcopy ")
