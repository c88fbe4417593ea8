# local_insight/core/cascade/base.py
"""
CASCADE MODULE - Chains of dependent cached fetches

Purpose:
    1. Describe each panel as an ordered list of stages (declarative)
    2. Enable a stage only when its parent has data and its key can be derived
    3. Keep the user's selections, clearing everything downstream when an
       upstream choice or result changes
    4. Pick a default selection once when a list first arrives

Data Flow:
    location + params + selections
        → derive_key(stage)         (None = stage stays idle)
        → QueryCache.query(key)     (dedup + staleness)
        → settled data              (success, or loading with retained data)
        → default selection         (only when nothing is selected yet)
        → next stage ...

A fan-out stage (``branches`` set) runs one child query per branch; it is
settled only when it has branches and every branch is settled.
"""

import asyncio
import copy
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import httpx

from local_insight.core.config import settings
from local_insight.core.errors import UnknownParam, UnknownStage
from local_insight.core.query_cache import IDLE, QueryCache, QueryKey, QueryState
from local_insight.core.schemas import Domain, Location, QueryStatus

logger = logging.getLogger(__name__)

Slot = Tuple[str, Optional[str]]


def is_settled(state: QueryState) -> bool:
    """Success, or a background revalidation still holding the previous result."""
    return state.is_success or (state.is_loading and state.has_data)


@dataclass(frozen=True)
class Stage:
    """
    One step of a cascade.

    Attributes:
        name: Stage name (also the selection name)
        derive_key: ``view -> key | None`` (fan-out: ``(view, branch) -> key | None``)
        fetch: ``(client, key) -> awaitable data``; everything it needs is in the key
        depends_on: Parent stage; None for root stages
        default_selection: ``data -> choice | None`` applied once per key
        stale_time: Seconds a result stays fresh (None = cascade default)
        branches: ``view -> [branch, ...]``; makes this a fan-out stage
    """

    name: str
    derive_key: Callable[..., Optional[QueryKey]]
    fetch: Callable[[httpx.AsyncClient, QueryKey], Awaitable[Any]]
    depends_on: Optional[str] = None
    default_selection: Optional[Callable[[Any], Optional[str]]] = None
    stale_time: Optional[float] = None
    branches: Optional[Callable[["StageView"], List[str]]] = None

    @property
    def fans_out(self) -> bool:
        return self.branches is not None


class StageView:
    """What a stage may look at while deriving its key."""

    def __init__(self, cascade: "Cascade", settled: Dict[str, Any]):
        self._cascade = cascade
        self._settled = settled

    @property
    def location(self) -> Location:
        return self._cascade.location

    def param(self, name: str) -> Any:
        return self._cascade.params[name]

    def data(self, stage: str) -> Any:
        """Settled data of an earlier stage (None when not settled)."""
        return self._settled.get(stage)

    def has_data(self, stage: str) -> bool:
        return stage in self._settled

    def selection(self, stage: str, branch: Optional[str] = None) -> Optional[str]:
        return self._cascade.selection(stage, branch)


@dataclass
class StageSnapshot:
    name: str
    state: QueryState
    key: Optional[QueryKey] = None
    branches: Optional[Dict[str, "StageSnapshot"]] = None

    @property
    def enabled(self) -> bool:
        if self.branches is not None:
            return any(child.enabled for child in self.branches.values())
        return self.key is not None

    @property
    def settled(self) -> bool:
        if self.branches is not None:
            return bool(self.branches) and all(child.settled for child in self.branches.values())
        return is_settled(self.state)

    @property
    def data(self) -> Any:
        return self.state.data

    def keys(self) -> Iterator[QueryKey]:
        if self.key is not None:
            yield self.key
        for child in (self.branches or {}).values():
            yield from child.keys()


@dataclass
class CascadeSnapshot:
    stages: Dict[str, StageSnapshot]
    selections: Dict[str, Any]
    params: Dict[str, Any]
    ready: bool

    def __getitem__(self, name: str) -> StageSnapshot:
        return self.stages[name]

    def data(self, name: str) -> Any:
        stage = self.stages[name]
        return stage.data if stage.settled else None

    def keys(self) -> List[QueryKey]:
        return [key for stage in self.stages.values() for key in stage.keys()]


def _fan_out_state(children: Dict[str, StageSnapshot]) -> QueryState:
    states = [child.state for child in children.values()]
    if not states:
        return IDLE

    data = {branch: child.state.data for branch, child in children.items()}
    if any(state.is_loading for state in states):
        return QueryState(QueryStatus.LOADING, data=data)
    errors = [state.error for state in states if state.is_error]
    if errors:
        return QueryState(QueryStatus.ERROR, data=data, error=errors[0])
    if any(state.is_idle for state in states):
        return IDLE
    fetched = [state.fetched_at for state in states if state.fetched_at is not None]
    return QueryState(QueryStatus.SUCCESS, data=data, fetched_at=max(fetched, default=None))


class Cascade:
    """
    Generic resolver; domains subclass it with a ``stages`` list.

    Subclasses set:
        domain: Which panel this is
        stages: Ordered stages (a parent always precedes its children)
        terminal: The stage whose enablement means the panel is "ready"
    and may override ``initial_params`` and ``present``.
    """

    domain: Domain
    stages: Sequence[Stage] = ()
    terminal: str = ""

    def __init__(
        self,
        cache: QueryCache,
        client: httpx.AsyncClient,
        location: Location,
        default_stale_time: Optional[float] = None,
    ):
        self.cache = cache
        self.client = client
        self.location = location
        self.default_stale_time = (
            settings.DEFAULT_STALE_TIME_SECONDS if default_stale_time is None else default_stale_time
        )
        self.params: Dict[str, Any] = self.initial_params()

        self._by_name: Dict[str, Stage] = {}
        for stage in self.stages:
            if stage.depends_on is not None and stage.depends_on not in self._by_name:
                raise ValueError(f"Stage {stage.name!r} depends on unknown or later stage {stage.depends_on!r}")
            self._by_name[stage.name] = stage
        if self.terminal not in self._by_name:
            raise ValueError(f"Terminal stage {self.terminal!r} is not declared")

        self._selections: Dict[str, Any] = {}
        self._last_keys: Dict[Slot, QueryKey] = {}
        self._observed: Dict[Slot, Any] = {}

        # Ordering of user actions against evaluations; a choice made after
        # the action that moved its key survives that key change
        self._tick = 0
        self._chosen_at: Dict[Slot, int] = {}
        self._keyed_at: Dict[Slot, int] = {}
        self._params_changed_at = 0

    def initial_params(self) -> Dict[str, Any]:
        return {}

    def present(self, snapshot: CascadeSnapshot) -> Dict[str, Any]:
        """Readable panel view built from a snapshot."""
        return {}

    # ------------------------------------------------------------------
    # Selections and params
    # ------------------------------------------------------------------

    def selection(self, stage: str, branch: Optional[str] = None) -> Optional[str]:
        value = self._selections.get(stage)
        if self._stage(stage).fans_out:
            return (value or {}).get(branch) if branch is not None else None
        return value

    @property
    def selections(self) -> Dict[str, Any]:
        return copy.deepcopy(self._selections)

    def select(self, stage: str, value: Optional[str], branch: Optional[str] = None) -> None:
        """
        Record an explicit choice for ``stage`` (None clears it).

        A changed choice clears every selection downstream of ``stage``.
        """
        definition = self._stage(stage)
        if definition.fans_out and branch is None:
            raise UnknownStage(f"Stage {stage!r} needs a branch to select an option")
        if not definition.fans_out and branch is not None:
            raise UnknownStage(f"Stage {stage!r} has no branches")

        if self.selection(stage, branch) == value:
            return

        self._store(definition, branch, value)
        if value is not None:
            self._chosen_at[(stage, branch)] = self._next_tick()
        self._clear_descendants(stage)
        logger.debug("%s: selected %s%s = %r", self.domain.value, stage, f"[{branch}]" if branch else "", value)

    def set_param(self, name: str, value: Any) -> None:
        self.set_params({name: value})

    def set_params(self, values: Dict[str, Any]) -> None:
        """
        Apply several params at once; nothing is written unless every one
        of them is valid.

        Raises:
            UnknownParam: A name this cascade does not have
            ValueError: A value of the wrong type
        """
        for name, value in values.items():
            self._check_param(name, value)

        changed = {name: value for name, value in values.items() if self.params[name] != value}
        if changed:
            self.params.update(changed)
            self._params_changed_at = self._next_tick()

    def _check_param(self, name: str, value: Any) -> None:
        if name not in self.params:
            raise UnknownParam(f"Unknown parameter {name!r} for {self.domain.value}")
        current = self.params[name]
        if current is not None and value is not None:
            if isinstance(current, bool) and not isinstance(value, bool):
                raise ValueError(f"Parameter {name!r} must be true or false")
            if isinstance(current, (int, float)) and not isinstance(current, bool):
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"Parameter {name!r} must be a number")
            if isinstance(current, str) and not isinstance(value, str):
                raise ValueError(f"Parameter {name!r} must be a string")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self) -> CascadeSnapshot:
        """One pass over the stages; schedules whatever fetches are due."""
        return self._evaluate(set())

    async def resolve(self) -> CascadeSnapshot:
        """
        Evaluate until nothing is in flight.

        Each key is queried at most once per call, so an errored stage is
        retried once and a stage with stale_time=0 does not loop.
        """
        seen: Set[QueryKey] = set()
        while True:
            snapshot = self._evaluate(seen)
            pending = [key for key in snapshot.keys() if self.cache.is_fetching(key)]
            if not pending:
                return snapshot
            await asyncio.gather(*(self.cache.wait(key) for key in pending))

    def _evaluate(self, seen: Set[QueryKey]) -> CascadeSnapshot:
        settled: Dict[str, Any] = {}
        snapshots: Dict[str, StageSnapshot] = {}

        for stage in self.stages:
            view = StageView(self, settled)
            parent_ready = stage.depends_on is None or stage.depends_on in settled

            if stage.fans_out:
                snapshot = self._evaluate_fan_out(stage, view, parent_ready, seen)
            else:
                key = stage.derive_key(view) if parent_ready else None
                snapshot = StageSnapshot(stage.name, self._run(stage, None, key, seen), key)

            if snapshot.settled:
                settled[stage.name] = snapshot.data
            snapshots[stage.name] = snapshot

        return CascadeSnapshot(
            stages=snapshots,
            selections=self.selections,
            params=dict(self.params),
            ready=snapshots[self.terminal].enabled,
        )

    def _evaluate_fan_out(
        self, stage: Stage, view: StageView, parent_ready: bool, seen: Set[QueryKey]
    ) -> StageSnapshot:
        branch_names = list(dict.fromkeys(stage.branches(view))) if parent_ready else []
        children: Dict[str, StageSnapshot] = {}
        for branch in branch_names:
            key = stage.derive_key(view, branch)
            children[branch] = StageSnapshot(
                f"{stage.name}[{branch}]", self._run(stage, branch, key, seen), key
            )
        return StageSnapshot(stage.name, _fan_out_state(children), None, branches=children)

    def _run(
        self, stage: Stage, branch: Optional[str], key: Optional[QueryKey], seen: Set[QueryKey]
    ) -> QueryState:
        if key is None:
            return IDLE

        slot = (stage.name, branch)
        previous_key = self._last_keys.get(slot)
        if previous_key is not None and previous_key != key:
            # New key: the old list is gone, so is anything chosen from it,
            # unless the choice came after whatever moved the key
            self._observed.pop(slot, None)
            if not self._chosen_since_key_moved(slot):
                self._store(stage, branch, None)
                self._clear_descendants(stage.name)
        self._last_keys[slot] = key
        self._keyed_at[slot] = self._tick

        if key in seen:
            state = self.cache.peek(key)
        else:
            seen.add(key)
            stale_time = self.default_stale_time if stage.stale_time is None else stage.stale_time
            state = self.cache.query(
                key, functools.partial(stage.fetch, self.client, key), stale_time=stale_time
            )

        if is_settled(state):
            self._observe(stage, branch, state.data)
        return state

    def _observe(self, stage: Stage, branch: Optional[str], data: Any) -> None:
        slot = (stage.name, branch)
        if slot in self._observed:
            previous = self._observed[slot]
            if previous is not data and previous != data:
                self._clear_descendants(stage.name)
        self._observed[slot] = data

        if stage.default_selection is not None and self.selection(stage.name, branch) is None:
            choice = stage.default_selection(data)
            if choice is not None:
                self._store(stage, branch, choice)
                logger.debug(
                    "%s: default %s%s = %r", self.domain.value, stage.name, f"[{branch}]" if branch else "", choice
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stage(self, name: str) -> Stage:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownStage(f"Unknown stage {name!r} for {self.domain.value}") from None

    def _next_tick(self) -> int:
        self._tick += 1
        return self._tick

    def _chosen_since_key_moved(self, slot: Slot) -> bool:
        chosen_at = self._chosen_at.get(slot, 0)
        return chosen_at > self._keyed_at.get(slot, 0) and chosen_at > self._params_changed_at

    def _store(self, stage: Stage, branch: Optional[str], value: Optional[str]) -> None:
        if value is None:
            self._chosen_at.pop((stage.name, branch), None)
        if stage.fans_out:
            choices = self._selections.setdefault(stage.name, {})
            if value is None:
                choices.pop(branch, None)
            else:
                choices[branch] = value
            if not choices:
                self._selections.pop(stage.name, None)
        elif value is None:
            self._selections.pop(stage.name, None)
        else:
            self._selections[stage.name] = value

    def descendants(self, name: str) -> List[str]:
        """Stages reachable from ``name`` through depends_on, in stage order."""
        reached = {name}
        found = []
        for stage in self.stages:
            if stage.depends_on in reached:
                reached.add(stage.name)
                found.append(stage.name)
        return found

    def _clear_descendants(self, name: str) -> None:
        cleared = set(self.descendants(name))
        for descendant in cleared:
            self._selections.pop(descendant, None)
        for slot in [slot for slot in self._chosen_at if slot[0] in cleared]:
            del self._chosen_at[slot]
