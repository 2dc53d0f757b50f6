"""A small directed-graph workflow engine.

Steps are plain callables ``(state, config) -> directive``. A directive either
names the next step explicitly (`Continue`), ends the run (`Terminal`), or
carries only a state patch (`Patch`, or a plain mapping), in which case the
router registered for the step picks the successor.

The graph is validated once by `compile()`; execution is strictly sequential
and stops when `END` is reached. Cycles are allowed and are bounded by the
routers, not by the engine.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .state import WorkflowState

logger = logging.getLogger(__name__)

END = "__end__"


class GraphCompileError(ValueError):
    pass


class RoutingError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Continue:
    """Apply `patch`, then go to `next_step` without consulting a router."""

    next_step: str
    patch: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Terminal:
    """Apply `patch` and end the run."""

    patch: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Patch:
    """Apply `patch` and let the step's router choose the next step."""

    patch: Mapping[str, Any] = field(default_factory=dict)


StepDirective = Continue | Terminal | Patch


@dataclass(frozen=True, slots=True)
class RunConfig:
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    metadata: Mapping[str, Any] = field(default_factory=dict)


StepHandler = Callable[[WorkflowState, RunConfig], "StepDirective | Mapping[str, Any]"]
Router = Callable[[WorkflowState], str]
Listener = Callable[[str, WorkflowState], None]


@dataclass(frozen=True, slots=True)
class _RouterEntry:
    router: Router
    targets: frozenset[str]


def _as_directive(value: object, step: str) -> StepDirective:
    if isinstance(value, (Continue, Terminal, Patch)):
        return value
    if isinstance(value, Mapping):
        return Patch(patch=value)
    raise RoutingError(f"Step {step!r} returned {type(value).__name__}, expected a directive or mapping")


class WorkflowGraph:
    def __init__(self, name: str = "workflow") -> None:
        self.name = name
        self._steps: dict[str, StepHandler] = {}
        self._routers: dict[str, _RouterEntry] = {}
        self._entry_point: str | None = None

    def register_step(self, name: str, handler: StepHandler) -> None:
        if name == END:
            raise GraphCompileError(f"{END!r} is reserved")
        if name in self._steps:
            raise GraphCompileError(f"Step already registered: {name!r}")
        self._steps[name] = handler

    def register_router(self, source: str, router: Router, possible_targets: Iterable[str]) -> None:
        if source in self._routers:
            raise GraphCompileError(f"Router already registered for step: {source!r}")
        targets = frozenset(possible_targets)
        if not targets:
            raise GraphCompileError(f"Router for {source!r} declares no targets")
        self._routers[source] = _RouterEntry(router=router, targets=targets)

    def register_edge(self, source: str, target: str) -> None:
        """Unconditional edge: a router with exactly one target."""

        def _always(_state: WorkflowState) -> str:
            return target

        self.register_router(source, _always, [target])

    def set_entry_point(self, name: str) -> None:
        self._entry_point = name

    def compile(self) -> CompiledWorkflow:
        if self._entry_point is None:
            raise GraphCompileError("No entry point set")
        if self._entry_point not in self._steps:
            raise GraphCompileError(f"Entry point is not a registered step: {self._entry_point!r}")
        for source, entry in self._routers.items():
            if source not in self._steps:
                raise GraphCompileError(f"Router registered for unknown step: {source!r}")
            unknown = sorted(t for t in entry.targets if t != END and t not in self._steps)
            if unknown:
                raise GraphCompileError(f"Router for {source!r} targets unknown steps: {unknown}")
        return CompiledWorkflow(
            name=self.name,
            entry_point=self._entry_point,
            steps=dict(self._steps),
            routers=dict(self._routers),
        )


class CompiledWorkflow:
    def __init__(
        self,
        *,
        name: str,
        entry_point: str,
        steps: dict[str, StepHandler],
        routers: dict[str, _RouterEntry],
    ) -> None:
        self.name = name
        self.entry_point = entry_point
        self._steps = steps
        self._routers = routers

    @property
    def step_names(self) -> list[str]:
        return list(self._steps)

    def targets_of(self, step: str) -> frozenset[str]:
        entry = self._routers.get(step)
        return entry.targets if entry is not None else frozenset()

    def run(
        self,
        initial_state: WorkflowState,
        config: RunConfig | None = None,
        *,
        listeners: Iterable[Listener] = (),
    ) -> WorkflowState:
        """Execute from the entry point until a step ends the run.

        Listeners are called after each step's patch is applied; their
        exceptions propagate and abort the run.
        """

        cfg = config or RunConfig()
        observers = list(listeners)
        state = initial_state
        current = self.entry_point

        while current != END:
            handler = self._steps.get(current)
            if handler is None:
                raise RoutingError(f"Unregistered step: {current!r}")

            logger.info("Running step", extra={"run_id": cfg.run_id, "step": current, "workflow": self.name})
            directive = _as_directive(handler(state, cfg), current)
            state = state.apply(directive.patch)
            for listener in observers:
                listener(current, state)

            current = self._next_step(current, directive, state)
            logger.debug("Routed", extra={"run_id": cfg.run_id, "next_step": current})

        logger.info("Workflow finished", extra={"run_id": cfg.run_id, "workflow": self.name})
        return state

    def _next_step(self, current: str, directive: StepDirective, state: WorkflowState) -> str:
        if isinstance(directive, Terminal):
            return END
        if isinstance(directive, Continue):
            if directive.next_step != END and directive.next_step not in self._steps:
                raise RoutingError(f"Step {current!r} jumped to unregistered step {directive.next_step!r}")
            return directive.next_step

        entry = self._routers.get(current)
        if entry is None:
            raise RoutingError(f"Step {current!r} returned a bare patch but has no router")
        chosen = entry.router(state)
        if chosen not in entry.targets:
            raise RoutingError(
                f"Router for {current!r} returned {chosen!r}, outside its targets {sorted(entry.targets)}"
            )
        return chosen
