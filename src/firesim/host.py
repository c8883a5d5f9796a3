"""
Host-side handoff for the fire solver.

The invoking context (game loop, UI thread, scripting) and the dispatch
context (whatever thread owns the compute backend) talk through a
:class:`TickChannel`: the host posts tick and reset requests, the dispatch
side drains them in order. :class:`SimulationWorker` drains a channel on a
background thread; callers that already run on the dispatch context call
:meth:`TickChannel.pump` themselves.

:class:`FireSimulatorVolume` is the thin lifecycle wrapper a scene object
uses: ``begin_play`` initializes, ``tick_component`` forwards frame time,
``end_play`` releases the grids.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import queue
import threading
from typing import Callable, List, Optional, Tuple

from .config import FireSimulationConfig
from .debug import dbg, is_enabled
from .simulation import FireSimulation, TickReport


@dataclass
class _TickRequest:
    dt: float
    config: Optional[FireSimulationConfig]


@dataclass
class _ResetRequest:
    pass


class TickChannel:
    """Ordered queue of requests from the host to the dispatch context."""

    def __init__(self, simulation: FireSimulation) -> None:
        self.simulation = simulation
        self._requests: "queue.Queue[object]" = queue.Queue()
        self._done = threading.Condition()

    def post_tick(self, dt: float, config: Optional[FireSimulationConfig] = None) -> None:
        self._requests.put(_TickRequest(float(dt), config))

    def post_reset(self) -> None:
        self._requests.put(_ResetRequest())

    @property
    def unfinished(self) -> int:
        """Requests posted but not yet fully handled."""
        return self._requests.unfinished_tasks

    def pump(self, limit: Optional[int] = None) -> List[TickReport]:
        """Run queued requests on the calling thread; returns tick reports."""
        reports: List[TickReport] = []
        handled = 0
        while limit is None or handled < limit:
            try:
                req = self._requests.get_nowait()
            except queue.Empty:
                break
            handled += 1
            try:
                reports.extend(self.handle(req))
            finally:
                self.task_done()
        return reports

    def handle(self, req: object) -> List[TickReport]:
        if isinstance(req, _ResetRequest):
            self.simulation.request_reset()
            return []
        if isinstance(req, _TickRequest):
            return [self.simulation.tick(req.dt, req.config)]
        raise TypeError(f"unknown request {req!r}")

    def get(self, timeout: float) -> Optional[object]:
        try:
            return self._requests.get(timeout=timeout)
        except queue.Empty:
            return None

    def task_done(self) -> None:
        self._requests.task_done()
        with self._done:
            self._done.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every posted request has been handled.

        Returns False if ``timeout`` elapses first.
        """
        with self._done:
            return self._done.wait_for(lambda: self._requests.unfinished_tasks == 0, timeout)


class SimulationWorker:
    """Drain a :class:`TickChannel` on a background thread.

    Errors raised by a tick stop the worker and are kept on ``error``;
    they are not swallowed.
    """

    def __init__(self, channel: TickChannel, *, on_report: Optional[Callable[[TickReport], None]] = None) -> None:
        self.channel = channel
        self.on_report = on_report
        self.error: Optional[BaseException] = None
        self.processed = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="firesim-worker", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Signal the worker to exit and wait for completion."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until the channel is empty and no request is in flight."""
        return self.channel.wait_idle(timeout)

    def _run(self) -> None:
        while not self._stop.is_set():
            req = self.channel.get(timeout=0.05)
            if req is None:
                continue
            try:
                for report in self.channel.handle(req):
                    self.processed += 1
                    if self.on_report is not None:
                        self.on_report(report)
            except Exception as exc:
                self.error = exc
                if is_enabled():
                    dbg("host").debug(f"worker stopped: {type(exc).__name__}: {exc}")
                self._stop.set()
            finally:
                self.channel.task_done()


@dataclass
class FireSimulatorVolume:
    """Scene-facing lifecycle wrapper around a :class:`FireSimulation`."""

    config: FireSimulationConfig = field(default_factory=FireSimulationConfig)
    volume_size: Tuple[float, float, float] = (1000.0, 1000.0, 1000.0)
    simulation: FireSimulation = field(default_factory=FireSimulation)
    playing: bool = False

    def begin_play(self) -> None:
        self.simulation.initialize(self.volume_size, self.config)
        self.playing = True

    def tick_component(self, delta_time: float) -> Optional[TickReport]:
        if not self.playing:
            return None
        return self.simulation.tick(delta_time, self.config)

    def end_play(self) -> None:
        self.playing = False
        self.simulation.deinitialize()


__all__ = ["TickChannel", "SimulationWorker", "FireSimulatorVolume"]
