"""End-to-end tests for the tail engine, driven synchronously."""
from __future__ import annotations

import threading
from typing import List

import pytest

from loglens.drivers import ChangeDriver, ChangeNotice
from loglens.engine import TailEngine, TailOptions
from loglens.errors import DriverStartupError, EngineStateError, ReadError
from loglens.events import ErrorEvent, FileAdded, FileRemoved, LineEvent


class Collector:
    def __init__(self) -> None:
        self.events: List = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def lines(self) -> List[str]:
        return [event.text for event in self.events if isinstance(event, LineEvent)]

    def of(self, kind) -> List:
        return [event for event in self.events if isinstance(event, kind)]

    def clear(self) -> None:
        self.events.clear()


def _append(path, text: str) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)


@pytest.fixture
def collector() -> Collector:
    return Collector()


@pytest.fixture
def engine(collector):
    engine = TailEngine(TailOptions(initial_lines=10))
    engine.subscribe(collector)
    yield engine
    engine.stop()


def test_initial_window_then_append(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\nb\n")

    assert engine.start([log]) == [log.resolve()]
    assert collector.lines() == ["a", "b"]
    assert isinstance(collector.events[0], FileAdded)
    assert engine.store.size_of(log.resolve()) == 4

    _append(log, "c\n")
    engine.poll()
    assert collector.lines() == ["a", "b", "c"]
    assert [event.sequence for event in collector.of(LineEvent)] == [1, 2, 3]


def test_unchanged_file_emits_nothing(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])
    collector.clear()

    engine.poll()
    engine.poll()
    assert collector.events == []


def test_growth_reads_only_new_bytes(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("".join(f"old {i:03d}\n" for i in range(50)))
    assert log.stat().st_size == 400
    engine.start([log], initial_lines=0)
    assert collector.lines() == []

    _append(log, "".join(f"new {i:03d}\n" for i in range(15)))
    engine.poll()
    assert collector.lines() == [f"new {i:03d}" for i in range(15)]
    assert engine.store.size_of(log.resolve()) == 520


def test_round_trip_single_line(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("")
    engine.start([log])

    _append(log, "abc\n")
    engine.poll()
    assert collector.lines() == ["abc"]
    assert engine.store.get(log.resolve()).carry_over == ""


def test_partial_line_waits_for_terminator(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("first\nsec")
    engine.start([log])
    assert collector.lines() == ["first"]

    engine.poll()
    assert collector.lines() == ["first"]

    _append(log, "ond\n")
    engine.poll()
    assert collector.lines() == ["first", "second"]


def test_truncate_then_rewrite(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\nb\n")
    engine.start([log])
    collector.clear()

    log.write_text("x\n")
    engine.poll()
    assert collector.lines() == ["x"]
    assert engine.store.size_of(log.resolve()) == 2


def test_truncation_rereads_from_start(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("y" * 499 + "\n")
    engine.start([log], initial_lines=0)

    rotated = "".join(f"rotated {i}\n" for i in range(8))
    assert len(rotated) == 80
    log.write_text(rotated)
    engine.poll()
    assert collector.lines() == [f"rotated {i}" for i in range(8)]
    assert engine.store.size_of(log.resolve()) == 80


def test_removed_file_reported_once(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])
    collector.clear()

    log.unlink()
    engine.poll()
    engine.poll()
    assert len(collector.of(FileRemoved)) == 1
    assert len(collector.events) == 1
    assert engine.list_tracked_files() == []


def test_missing_file_does_not_affect_others(tmp_path, engine, collector) -> None:
    good = tmp_path / "good.log"
    good.write_text("ok\n")

    registered = engine.start([tmp_path / "missing.log", good])
    assert registered == [good.resolve()]
    errors = collector.of(ErrorEvent)
    assert len(errors) == 1
    assert errors[0].error_kind == "not_found"
    assert collector.lines() == ["ok"]


def test_read_error_keeps_cursor_and_retries(tmp_path, engine, collector, monkeypatch) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])
    collector.clear()
    _append(log, "b\n")

    original = engine.reader.read_range

    def failing(tracked, start, end, restart=False):
        raise ReadError(tracked.path, "Cannot read")

    monkeypatch.setattr(engine.reader, "read_range", failing)
    engine.poll()
    assert [event.error_kind for event in collector.of(ErrorEvent)] == ["read_error"]
    assert engine.store.size_of(log.resolve()) == 2

    monkeypatch.setattr(engine.reader, "read_range", original)
    engine.poll()
    assert collector.lines() == ["b"]


def test_file_recreated_after_removal(tmp_path, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("old\n")
    engine = TailEngine(TailOptions(initial_lines=10, follow=True, poll_interval=3600))
    engine.subscribe(collector)
    engine.start([log])
    try:
        collector.clear()
        log.unlink()
        engine.driver.tick()
        assert len(collector.of(FileRemoved)) == 1

        engine.driver.tick()
        assert len(collector.events) == 1

        log.write_text("fresh\n")
        engine.driver.tick()
        assert isinstance(collector.events[1], FileAdded)
        assert collector.lines() == ["fresh"]
        assert engine.list_tracked_files() == [log.resolve()]
    finally:
        engine.stop()


def test_poller_thread_delivers_appended_lines(tmp_path, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("")
    seen = threading.Event()

    def consumer(event) -> None:
        if isinstance(event, LineEvent) and event.text == "live":
            seen.set()

    engine = TailEngine(TailOptions(follow=True, poll_interval=0.01))
    engine.subscribe(consumer)
    engine.start([log])
    try:
        _append(log, "live\n")
        assert seen.wait(timeout=5)
    finally:
        engine.stop()


def test_concurrent_notices_do_not_duplicate_lines(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("")
    engine.start([log])
    _append(log, "".join(f"line {i}\n" for i in range(2000)))

    threads = [threading.Thread(target=engine.poll) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert collector.lines() == [f"line {i}" for i in range(2000)]


def test_remove_file_unregisters(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])

    assert engine.remove_file(log)
    assert not engine.remove_file(log)
    assert len(collector.of(FileRemoved)) == 1
    assert engine.list_tracked_files() == []


def test_add_file_at_runtime(tmp_path, engine, collector) -> None:
    first = tmp_path / "first.log"
    second = tmp_path / "second.log"
    first.write_text("1\n")
    second.write_text("2\n")
    engine.start([first])

    assert engine.add_file(second) == second.resolve()
    assert engine.list_tracked_files() == sorted([first.resolve(), second.resolve()])
    assert collector.lines() == ["1", "2"]


def test_stop_is_idempotent_and_can_flush(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("done\nunterminated")
    engine.start([log])

    engine.stop(flush=True)
    engine.stop()
    assert collector.lines() == ["done", "unterminated"]
    assert not engine.running
    assert engine.list_tracked_files() == []


def test_start_twice_is_rejected(tmp_path, engine) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])
    with pytest.raises(EngineStateError):
        engine.start([log])


class _BrokenDriver(ChangeDriver):
    def start(self) -> None:
        raise DriverStartupError("no notifications available")

    def stop(self) -> None:
        pass


def test_driver_startup_failure_aborts_start(tmp_path, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine = TailEngine(
        TailOptions(follow=True),
        driver_factory=lambda eng: _BrokenDriver(eng.handle_notice),
    )
    engine.subscribe(collector)

    with pytest.raises(DriverStartupError):
        engine.start([log])
    assert not engine.running
    assert engine.list_tracked_files() == []
    assert collector.events == []


def test_failing_consumer_does_not_block_others(tmp_path, engine, collector) -> None:
    def broken(event) -> None:
        raise RuntimeError("boom")

    engine.dispatcher.unsubscribe(collector)
    engine.subscribe(broken)
    engine.subscribe(collector)

    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine.start([log])
    assert collector.lines() == ["a"]


def test_unknown_driver_rejected() -> None:
    with pytest.raises(ValueError):
        TailEngine(TailOptions(driver="inotify"))


def test_line_started_before_window_is_never_emitted(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("x" * 3000)
    engine.start([log])
    assert collector.lines() == []

    _append(log, "yyy\n")
    engine.poll()
    assert collector.lines() == []

    _append(log, "z\n")
    engine.poll()
    assert collector.lines() == ["z"]


def test_zero_initial_lines_keeps_line_in_progress(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\npart")
    engine.start([log], initial_lines=0)
    assert collector.lines() == []

    _append(log, "ial\n")
    engine.poll()
    assert collector.lines() == ["partial"]


def test_zero_initial_lines_skips_overlong_line_in_progress(tmp_path, engine, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("x" * 3000)
    engine.start([log], initial_lines=0)

    _append(log, "yyy\nz\n")
    engine.poll()
    assert collector.lines() == ["z"]


class _UnwatchableDriver(ChangeDriver):
    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def watch(self, path) -> None:
        raise OSError("inotify watch limit reached")


def test_watch_failure_withdraws_registered_file(tmp_path, collector) -> None:
    log = tmp_path / "app.log"
    log.write_text("a\n")
    engine = TailEngine(
        TailOptions(follow=True),
        driver_factory=lambda eng: _UnwatchableDriver(eng.handle_notice),
    )
    engine.subscribe(collector)

    assert engine.start([log]) == []
    try:
        assert [event.kind for event in collector.events] == [
            "file_added",
            "line",
            "file_removed",
            "error",
        ]
        assert collector.of(ErrorEvent)[0].error_kind == "watch_error"
        assert engine.list_tracked_files() == []
    finally:
        engine.stop()


def test_registration_racing_stop_leaves_no_state(tmp_path, collector, monkeypatch) -> None:
    log = tmp_path / "app.log"
    log.write_text("old\n")
    engine = TailEngine(TailOptions(follow=True, poll_interval=3600))
    engine.subscribe(collector)
    engine.start([log])
    log.unlink()
    engine.poll()
    log.write_text("fresh\n")
    collector.clear()

    insert = engine.store.insert

    def stop_then_insert(tracked):
        engine.stop()
        return insert(tracked)

    monkeypatch.setattr(engine.store, "insert", stop_then_insert)
    engine.handle_notice(ChangeNotice(path=log.resolve()))

    assert not engine.running
    assert engine.list_tracked_files() == []
    assert collector.events == []
