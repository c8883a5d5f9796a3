# -*- coding: utf-8 -*-
"""Declarative compute backend: grid allocation, dispatch and swap.

The solver never touches grid memory directly. Stages describe work as
dispatches (kernel id, parameters, thread groups, named read and write
sets) and the backend records them into a :class:`CommandGraph`. Edges are
inferred from the declared sets, so passes that do not share a buffer are
free to run in any order and passes that do are ordered by their hazard:

- read-after-write: a reader waits for the last writer of the buffer
- write-after-read: a writer waits for every reader since the last write
- write-after-write: a writer waits for the previous writer

``submit`` executes the recorded graph in deterministic topological order
and then signals completion through callbacks.

:class:`NumpyBackend` is the shipped implementation: buffers are ``float32``
numpy arrays pooled in an arena keyed by ``(resolution, format)`` and kernels
are the array functions registered in :mod:`firesim.kernels`.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
import itertools
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import networkx as nx
import numpy as np

from .debug import dbg, is_enabled, summarize_passes
from .errors import DependencyError
from .resolution import THREAD_COUNT, Int3

SWAP_KERNEL = "swap"


class GridFormat(Enum):
    """Texel formats; the value is the channel count."""

    R32F = 1
    RGB32F = 3
    RGBA32F = 4

    @property
    def channels(self) -> int:
        return int(self.value)


@dataclass(frozen=True)
class BufferHandle:
    """Opaque reference to a backend-owned grid."""

    uid: int
    name: str
    resolution: Int3
    format: GridFormat

    @property
    def shape(self) -> Tuple[int, ...]:
        if self.format.channels == 1:
            return tuple(self.resolution)
        return tuple(self.resolution) + (self.format.channels,)


@dataclass
class Pass:
    """One recorded dispatch."""

    index: int
    kernel_id: str
    params: Dict[str, Any]
    thread_group_count: Int3
    reads: Dict[str, BufferHandle]
    writes: Dict[str, BufferHandle]
    label: str = ""

    def touches(self, handle: BufferHandle) -> bool:
        return any(h.uid == handle.uid for h in itertools.chain(self.reads.values(), self.writes.values()))


class CommandGraph:
    """Dependency graph of recorded passes.

    Nodes are pass indices (recording order) carrying the :class:`Pass` under
    the ``"pass"`` attribute; edges carry the hazard kind under ``"hazard"``.
    """

    def __init__(self) -> None:
        self.graph = nx.DiGraph()
        self._passes: List[Pass] = []
        self._last_writer: Dict[int, int] = {}
        self._readers: Dict[int, List[int]] = defaultdict(list)

    def __len__(self) -> int:
        return len(self._passes)

    @property
    def passes(self) -> List[Pass]:
        return list(self._passes)

    def add(self, p: Pass) -> None:
        node = p.index
        self.graph.add_node(node, **{"pass": p})
        self._passes.append(p)
        for h in p.reads.values():
            writer = self._last_writer.get(h.uid)
            if writer is not None:
                self._edge(writer, node, "raw")
            self._readers[h.uid].append(node)
        for h in p.writes.values():
            writer = self._last_writer.get(h.uid)
            if writer is not None:
                self._edge(writer, node, "waw")
            for reader in self._readers[h.uid]:
                if reader != node:
                    self._edge(reader, node, "war")
            self._last_writer[h.uid] = node
            self._readers[h.uid] = []

    def _edge(self, a: int, b: int, hazard: str) -> None:
        if a == b:
            return
        if self.graph.has_edge(a, b):
            self.graph.edges[a, b]["hazard"] += "," + hazard
        else:
            self.graph.add_edge(a, b, hazard=hazard)

    def order(self) -> List[Pass]:
        """Passes in topological order, ties broken by recording order."""
        return [self.graph.nodes[n]["pass"] for n in nx.lexicographical_topological_sort(self.graph)]

    def concurrency_levels(self) -> List[List[str]]:
        """Labels of passes grouped by dependency depth.

        Passes in the same level have no path between them and may be
        scheduled concurrently.
        """
        return [
            [self.graph.nodes[n]["pass"].label for n in sorted(gen)]
            for gen in nx.topological_generations(self.graph)
        ]

    def find(self, label: str) -> List[Pass]:
        return [p for p in self._passes if p.label == label]

    def depends_on(self, later: Pass, earlier: Pass) -> bool:
        return nx.has_path(self.graph, earlier.index, later.index)


KernelFn = Callable[[Mapping[str, Any], Mapping[str, np.ndarray], Mapping[str, np.ndarray]], None]
CompletionFn = Callable[["CommandGraph"], None]


class ComputeBackend:
    """Interface the solver core consumes.

    Implementations own every grid. The core only allocates, dispatches and
    swaps; it never reads or writes memory itself.
    """

    def allocate_grid(self, resolution: Int3, fmt: GridFormat, name: str = "") -> BufferHandle:  # pragma: no cover - interface
        raise NotImplementedError

    def release(self, handle: BufferHandle) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def dispatch(
        self,
        kernel_id: str,
        params: Mapping[str, Any],
        thread_group_count: Int3,
        reads: Mapping[str, BufferHandle],
        writes: Mapping[str, BufferHandle],
        *,
        label: str = "",
    ) -> Pass:  # pragma: no cover - interface
        raise NotImplementedError

    def swap(self, a: BufferHandle, b: BufferHandle) -> Pass:  # pragma: no cover - interface
        raise NotImplementedError

    def submit(self, on_complete: Optional[CompletionFn] = None) -> int:  # pragma: no cover - interface
        raise NotImplementedError

    def discard(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def read_view(self, handle: BufferHandle) -> np.ndarray:  # pragma: no cover - interface
        raise NotImplementedError


class NumpyBackend(ComputeBackend):
    """Array backend executing registered kernels over a command graph."""

    def __init__(self, kernels: Optional[Mapping[str, KernelFn]] = None, *, dtype=np.float32) -> None:
        if kernels is None:
            from .kernels import KERNELS

            kernels = KERNELS
        self.kernels: Dict[str, KernelFn] = dict(kernels)
        self.dtype = np.dtype(dtype)
        self._uids = itertools.count(1)
        self._pass_ids = itertools.count()
        self._storage: Dict[int, np.ndarray] = {}
        self._handles: Dict[int, BufferHandle] = {}
        self._pool: Dict[Tuple[Int3, GridFormat], List[np.ndarray]] = defaultdict(list)
        self._pending = CommandGraph()
        self.last_graph: Optional[CommandGraph] = None
        self.frames_submitted = 0

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------
    def allocate_grid(self, resolution: Int3, fmt: GridFormat, name: str = "") -> BufferHandle:
        resolution = tuple(int(n) for n in resolution)  # type: ignore[assignment]
        if len(resolution) != 3 or min(resolution) <= 0:
            raise DependencyError(f"cannot allocate grid with resolution {resolution!r}")
        handle = BufferHandle(next(self._uids), name or f"grid{len(self._handles)}", resolution, fmt)
        pool = self._pool[(resolution, fmt)]
        if pool:
            arr = pool.pop()
            reused = True
        else:
            arr = np.zeros(handle.shape, dtype=self.dtype)
            reused = False
        self._storage[handle.uid] = arr
        self._handles[handle.uid] = handle
        if is_enabled():
            dbg("backend").debug(f"allocate {handle.name} res={resolution} fmt={fmt.name} reused={reused}")
        return handle

    def release(self, handle: BufferHandle) -> None:
        self._check_live(handle)
        if any(p.touches(handle) for p in self._pending.passes):
            raise DependencyError(f"release of {handle.name} while pending passes reference it")
        arr = self._storage.pop(handle.uid)
        del self._handles[handle.uid]
        self._pool[(handle.resolution, handle.format)].append(arr)
        if is_enabled():
            dbg("backend").debug(f"release {handle.name}")

    def is_live(self, handle: Optional[BufferHandle]) -> bool:
        return handle is not None and handle.uid in self._handles

    @property
    def live_handles(self) -> List[BufferHandle]:
        return list(self._handles.values())

    @property
    def pooled_count(self) -> int:
        return sum(len(v) for v in self._pool.values())

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def dispatch(
        self,
        kernel_id: str,
        params: Mapping[str, Any],
        thread_group_count: Int3,
        reads: Mapping[str, BufferHandle],
        writes: Mapping[str, BufferHandle],
        *,
        label: str = "",
    ) -> Pass:
        if kernel_id not in self.kernels:
            raise DependencyError(f"unknown kernel {kernel_id!r}")
        if not writes:
            raise DependencyError(f"{kernel_id}: dispatch without a write set")
        for h in itertools.chain(reads.values(), writes.values()):
            self._check_live(h)
        read_ids = {h.uid for h in reads.values()}
        aliased = [h.name for h in writes.values() if h.uid in read_ids]
        if aliased:
            raise DependencyError(f"{kernel_id}: buffers both read and written: {', '.join(aliased)}")
        groups = tuple(int(g) for g in thread_group_count)
        for h in writes.values():
            covered = tuple(g * t for g, t in zip(groups, THREAD_COUNT))
            if len(groups) != 3 or any(c < n for c, n in zip(covered, h.resolution)):
                raise DependencyError(
                    f"{kernel_id}: thread groups {groups} do not cover {h.name} {h.resolution}"
                )
        p = Pass(
            index=next(self._pass_ids),
            kernel_id=kernel_id,
            params=dict(params),
            thread_group_count=groups,  # type: ignore[arg-type]
            reads=dict(reads),
            writes=dict(writes),
            label=label or kernel_id,
        )
        self._pending.add(p)
        return p

    def swap(self, a: BufferHandle, b: BufferHandle) -> Pass:
        self._check_live(a)
        self._check_live(b)
        if a.uid == b.uid or a.shape != b.shape:
            raise DependencyError(f"cannot swap {a.name} with {b.name}")
        p = Pass(
            index=next(self._pass_ids),
            kernel_id=SWAP_KERNEL,
            params={},
            thread_group_count=(0, 0, 0),
            reads={},
            writes={"a": a, "b": b},
            label=f"swap:{a.name}",
        )
        self._pending.add(p)
        return p

    @property
    def pending(self) -> CommandGraph:
        return self._pending

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def submit(self, on_complete: Optional[CompletionFn] = None) -> int:
        """Execute every pending pass; returns the number executed."""
        graph, self._pending = self._pending, CommandGraph()
        for p in graph.order():
            if p.kernel_id == SWAP_KERNEL:
                a, b = p.writes["a"], p.writes["b"]
                self._storage[a.uid], self._storage[b.uid] = self._storage[b.uid], self._storage[a.uid]
                continue
            inputs = {k: self._storage[h.uid] for k, h in p.reads.items()}
            outputs = {k: self._storage[h.uid] for k, h in p.writes.items()}
            self.kernels[p.kernel_id](p.params, inputs, outputs)
        self.last_graph = graph
        self.frames_submitted += 1
        if is_enabled():
            dbg("backend").debug(
                f"submit: passes={len(graph)} levels={len(graph.concurrency_levels())} "
                f"[{summarize_passes(graph.passes)}]"
            )
        if on_complete is not None:
            on_complete(graph)
        return len(graph)

    def discard(self) -> None:
        if is_enabled() and len(self._pending):
            dbg("backend").debug(f"discard: passes={len(self._pending)}")
        self._pending = CommandGraph()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    def read_view(self, handle: BufferHandle) -> np.ndarray:
        """Read-only view of a grid's current contents."""
        self._check_live(handle)
        view = self._storage[handle.uid].view()
        view.flags.writeable = False
        return view

    def storage(self, handle: BufferHandle) -> np.ndarray:
        """Writable array behind ``handle``; for tests and debugging only."""
        self._check_live(handle)
        return self._storage[handle.uid]

    def _check_live(self, handle: Optional[BufferHandle]) -> None:
        if handle is None or handle.uid not in self._handles:
            name = getattr(handle, "name", handle)
            raise DependencyError(f"buffer {name!r} is not allocated")


__all__ = [
    "GridFormat",
    "BufferHandle",
    "Pass",
    "CommandGraph",
    "ComputeBackend",
    "NumpyBackend",
    "SWAP_KERNEL",
    "KernelFn",
]
