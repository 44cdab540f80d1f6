"""Tests for shipyard.output.console module."""

from __future__ import annotations

import threading

import pytest

from shipyard.output.console import ConsoleProtocol, MockConsole, RichConsole, Style


class TestMockConsole:
    def test_prefixes(self) -> None:
        console = MockConsole()
        console.success("published")
        console.error("build failed")
        console.warning("skipped")
        console.info("waiting")

        assert console.messages == [
            "OK published",
            "error: build failed",
            "warning: skipped",
            "info: waiting",
        ]

    def test_has_error_and_count(self) -> None:
        console = MockConsole()
        console.print("log line", Style.DIM)
        assert not console.has_error()
        console.error("boom")
        assert console.has_error()
        assert console.count(Style.DIM) == 1

    def test_find_and_clear(self) -> None:
        console = MockConsole()
        console.header("Release r1")
        console.print("api: healthy")
        assert len(console.find("api")) == 1
        console.clear()
        assert console.outputs == []

    def test_thread_safe_appends(self) -> None:
        console = MockConsole()

        def emit() -> None:
            for i in range(200):
                console.print(str(i))

        threads = [threading.Thread(target=emit) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(console.outputs) == 800

    def test_satisfies_protocol(self) -> None:
        console: ConsoleProtocol = MockConsole()
        console.newline()


class TestRichConsole:
    def test_does_not_interpret_markup(self, capsys: pytest.CaptureFixture[str]) -> None:
        console = RichConsole()
        console.print("[bold]literal[/bold]")
        console.error("exit [1]")

        out = capsys.readouterr().out
        assert "[bold]literal[/bold]" in out
        assert "error: exit [1]" in out
