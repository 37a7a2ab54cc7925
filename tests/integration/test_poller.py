"""Tests for the periodic poller loop."""

import threading

import pytest

from chatguard.core.exceptions import CancelledError
from chatguard.core.pipeline import CycleReport
from chatguard.core.poller import SourcePoller


class FakePipeline:
    """Counts cycles and runs a scripted side effect per cycle."""

    def __init__(self, effects=None, stop_after=None, stop_event=None):
        self.effects = list(effects or [])
        self.calls = 0
        self.stop_after = stop_after
        self.stop_event = stop_event

    def run_cycle(self, ctx):
        self.calls += 1
        if self.stop_after is not None and self.calls >= self.stop_after:
            self.stop_event.set()
        if self.effects:
            effect = self.effects.pop(0)
            if isinstance(effect, Exception):
                raise effect
        return CycleReport(conversations=1, items=self.calls)


class TestSourcePoller:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            SourcePoller(FakePipeline(), interval=0)

    def test_run_once_records_report(self):
        poller = SourcePoller(FakePipeline(), interval=5)

        report = poller.run_once()

        assert poller.cycles == 1
        assert poller.last_report is report
        assert report.items == 1

    @pytest.mark.timeout(10)
    def test_run_stops_on_event(self):
        stop = threading.Event()
        pipeline = FakePipeline(stop_after=3, stop_event=stop)
        poller = SourcePoller(pipeline, interval=0.01)

        poller.run(stop)

        assert pipeline.calls == 3
        assert poller.cycles == 3

    @pytest.mark.timeout(10)
    def test_cycle_errors_do_not_stop_polling(self):
        """A crashing cycle is logged and the next one still runs."""
        stop = threading.Event()
        pipeline = FakePipeline(
            effects=[RuntimeError("boom"), KeyError("x")], stop_after=3, stop_event=stop
        )
        poller = SourcePoller(pipeline, interval=0.01)

        poller.run(stop)

        assert pipeline.calls == 3
        assert poller.cycles == 1

    @pytest.mark.timeout(10)
    def test_cancellation_ends_loop(self):
        stop = threading.Event()
        pipeline = FakePipeline(effects=[CancelledError("stopped")])
        poller = SourcePoller(pipeline, interval=0.01)

        poller.run(stop)

        assert pipeline.calls == 1
        assert poller.cycles == 0

    @pytest.mark.timeout(10)
    def test_already_stopped(self):
        stop = threading.Event()
        stop.set()
        pipeline = FakePipeline()

        SourcePoller(pipeline, interval=60).run(stop)

        assert pipeline.calls == 0

    @pytest.mark.timeout(10)
    def test_stop_from_another_thread_interrupts_sleep(self):
        stop = threading.Event()
        pipeline = FakePipeline()
        poller = SourcePoller(pipeline, interval=3600)
        worker = threading.Thread(target=poller.run, args=(stop,))

        worker.start()
        stop.set()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert pipeline.calls <= 1
