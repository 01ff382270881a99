"""Tests for the output sink and the clipboard writer."""

from __future__ import annotations

import io
import logging

import pyperclip
import pytest

from fakes import ClosedPipe, FakeClipboard
from fzcopy import (
    ClipboardWriteFailure,
    OutputSink,
    PyperclipClipboard,
    UnsupportedPlatformClipboard,
)


def _sink(clipboard):
    out, err = io.StringIO(), io.StringIO()
    return OutputSink(clipboard, stdout=out, stderr=err), out, err


def test_default_prints_and_copies():
    clipboard = FakeClipboard()
    sink, out, err = _sink(clipboard)
    assert sink.emit("bundle", quiet=False, force_print=False, file_count=2)
    assert out.getvalue() == "bundle\n"
    assert clipboard.copied == ["bundle"]
    assert "Copied 2 files (6 chars) to clipboard." in err.getvalue()


def test_quiet_direct_run_does_nothing():
    clipboard = FakeClipboard()
    sink, out, err = _sink(clipboard)
    sink.emit("bundle", quiet=True, force_print=False)
    assert out.getvalue() == ""
    assert clipboard.copied == []


def test_quiet_print_skips_clipboard():
    clipboard = FakeClipboard()
    sink, out, _ = _sink(clipboard)
    sink.emit("bundle", quiet=True, force_print=True)
    assert out.getvalue() == "bundle\n"
    assert clipboard.copied == []


def test_interactive_quiet_still_copies_silently():
    clipboard = FakeClipboard()
    sink, out, err = _sink(clipboard)
    sink.emit("bundle", quiet=True, force_print=False, always_copy=True)
    assert out.getvalue() == ""
    assert err.getvalue() == ""
    assert clipboard.copied == ["bundle"]


def test_clipboard_failure_is_reported_not_raised(caplog: pytest.LogCaptureFixture):
    sink, out, _ = _sink(FakeClipboard(fail=True))
    with caplog.at_level(logging.ERROR):
        ok = sink.emit("bundle", quiet=False, force_print=False)
    assert not ok
    assert out.getvalue() == "bundle\n"
    assert "xclip vanished" in caplog.text


def test_pyperclip_writer_wraps_errors():
    def broken_copy(text: str) -> None:
        raise pyperclip.PyperclipException("no display")

    with pytest.raises(ClipboardWriteFailure, match="no display"):
        PyperclipClipboard(broken_copy).write("text")


def test_pyperclip_writer_passes_text_through():
    copied = []
    PyperclipClipboard(copied.append).write("hello")
    assert copied == ["hello"]


def test_detect_without_clipboard(monkeypatch: pytest.MonkeyPatch):
    class Unavailable:
        def __call__(self, *args, **kwargs):
            raise pyperclip.PyperclipException("unavailable")

        def __bool__(self):
            return False

    monkeypatch.setattr(pyperclip, "determine_clipboard", lambda: (Unavailable(), Unavailable()))
    with pytest.raises(UnsupportedPlatformClipboard):
        PyperclipClipboard.detect()


def test_detect_with_clipboard(monkeypatch: pytest.MonkeyPatch):
    copied = []
    monkeypatch.setattr(pyperclip, "determine_clipboard", lambda: (copied.append, lambda: ""))
    PyperclipClipboard.detect().write("x")
    assert copied == ["x"]


def test_broken_stdout_still_copies(caplog: pytest.LogCaptureFixture):
    clipboard = FakeClipboard()
    sink = OutputSink(clipboard, stdout=ClosedPipe(), stderr=io.StringIO())
    with caplog.at_level(logging.WARNING):
        ok = sink.emit("bundle", quiet=False, force_print=False)
    assert ok
    assert clipboard.copied == ["bundle"]
    assert "Could not write to stdout" in caplog.text


def test_broken_stdout_with_quiet_print():
    clipboard = FakeClipboard()
    sink = OutputSink(clipboard, stdout=ClosedPipe(), stderr=io.StringIO())
    assert sink.emit("bundle", quiet=True, force_print=True)
    assert clipboard.copied == []
