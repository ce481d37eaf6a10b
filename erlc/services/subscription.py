"""Polling-based change detection.

A :class:`Subscription` periodically fetches the tracked resources and turns
the difference between consecutive snapshots into events:

- players and vehicles are diffed by presence (arrivals and departures),
- command, mod call, kill and join logs are diffed by a timestamp
  high-water mark.

The log diff re-emits records within one poll interval of the high-water
mark, so it can report a record twice near the boundary (or miss one if the
remote log reorders near-simultaneous entries). It is best-effort, not an
exactly-once feed.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from erlc.core.config import RequestOptions
from erlc.core.logging import get_logger
from erlc.models import Player, PlayerChange, Vehicle, VehicleChange

if TYPE_CHECKING:
    from erlc.client import ERLCClient

logger = get_logger(__name__)

# Polls always observe live data
_LIVE = RequestOptions(cache=False)


class EventType(str, Enum):
    PLAYERS = "players"
    COMMANDS = "commands"
    KILLS = "kills"
    MODCALLS = "modcalls"
    JOINS = "joins"
    VEHICLES = "vehicles"


LOG_EVENT_TYPES = (EventType.COMMANDS, EventType.KILLS, EventType.MODCALLS, EventType.JOINS)

# Client method used to fetch each resource kind
_FETCHERS: Dict[EventType, str] = {
    EventType.PLAYERS: "get_players",
    EventType.COMMANDS: "get_command_logs",
    EventType.KILLS: "get_kill_logs",
    EventType.MODCALLS: "get_mod_calls",
    EventType.JOINS: "get_join_logs",
    EventType.VEHICLES: "get_vehicles",
}


@dataclass
class EventConfig:
    """Subscription settings.

    Attributes:
        poll_interval: Seconds between poll attempts
        retry_on_error: Pause polling for ``retry_interval`` after a failed poll
        retry_interval: Cooldown in seconds after a failed poll
        include_initial_state: Seed state on start so only later changes are reported
        log_errors: Log polling failures at error level
        filter_func: Predicate on :class:`ChangeEvent`; events it rejects are dropped
        error_handler: Called with the exception of each failed poll
    """

    poll_interval: float = 2.0
    retry_on_error: bool = True
    retry_interval: float = 5.0
    include_initial_state: bool = False
    log_errors: bool = False
    filter_func: Optional[Callable[["ChangeEvent"], bool]] = None
    error_handler: Optional[Callable[[BaseException], Any]] = None


@dataclass
class ChangeEvent:
    type: EventType
    data: List[Any]


@dataclass
class SubscriptionState:
    """Last observed snapshot of every tracked resource.

    Attributes:
        players: Player string -> last seen record
        vehicles: ``Owner:Name`` -> last seen record
        log_times: High-water mark timestamp per log kind
        initialized: Whether initial-state seeding completed
    """

    players: Dict[str, Player] = field(default_factory=dict)
    vehicles: Dict[str, Vehicle] = field(default_factory=dict)
    log_times: Dict[EventType, int] = field(default_factory=lambda: {t: 0 for t in LOG_EVENT_TYPES})
    initialized: bool = False


class Subscription:
    """Polls the API and dispatches change events to registered handlers.

    Example:
        subscription = client.subscribe([EventType.PLAYERS, EventType.KILLS])
        subscription.handle(players=on_players, kills=on_kills)
        await subscription.start()
        ...
        subscription.close()
    """

    def __init__(
        self,
        client: "ERLCClient",
        config: Optional[EventConfig] = None,
        event_types: Iterable[Any] = (),
    ):
        self.client = client
        self.config = config or EventConfig()
        self.event_types: List[EventType] = [EventType(t) for t in event_types]
        self.handlers: Dict[EventType, Callable[[List[Any]], Any]] = {}
        self.state = SubscriptionState()

        self._running = False
        self._poll_in_flight = False
        self._next_allowed_poll = 0.0
        self._stop_event = asyncio.Event()
        self._timer_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def poll_in_flight(self) -> bool:
        return self._poll_in_flight

    def handle(self, **handlers: Callable[[List[Any]], Any]) -> None:
        """Register handlers keyed by event type name.

        Registering a handler for a type that already has one replaces it.
        Handlers may be plain functions or coroutine functions.

        Raises:
            ValueError: For an unknown event type name
        """
        for name, handler in handlers.items():
            try:
                event_type = EventType(name)
            except ValueError:
                raise ValueError(f"Unknown event type: {name}") from None
            self.handlers[event_type] = handler

    async def start(self) -> None:
        """Start polling. Does nothing if already running."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()

        if self.config.include_initial_state:
            await self.initialize_state()

        self._timer_task = asyncio.create_task(self._timer_loop(), name="erlc-subscription-timer")
        logger.debug(
            f"Subscription started for {', '.join(t.value for t in self.event_types)} "
            f"(poll interval {self.config.poll_interval}s)"
        )

    def stop(self) -> None:
        """Stop the poll timer.

        A poll already in progress runs to completion so changes it has
        diffed are still dispatched. The last observed state is kept, so a
        later :meth:`start` resumes from it. Safe to call more than once.
        """
        was_running = self._running
        self._running = False
        self._poll_in_flight = False
        self._next_allowed_poll = 0.0
        self._stop_event.set()

        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
        self._timer_task = None

        if was_running:
            logger.debug("Subscription stopped")

    def close(self) -> None:
        self.stop()

    async def initialize_state(self) -> None:
        """Seed the state with the current snapshot of every tracked resource.

        Failures are logged (when ``log_errors`` is set) and passed to the
        error handler; they never prevent the subscription from starting.
        """
        try:
            for event_type in self.event_types:
                records = await self._fetch(event_type)
                if event_type == EventType.PLAYERS:
                    self.state.players = {p.player: p for p in records}
                elif event_type == EventType.VEHICLES:
                    self.state.vehicles = {v.key: v for v in records}
                elif records:
                    self.state.log_times[event_type] = records[0].timestamp
            self.state.initialized = True
        except Exception as e:
            if self.config.log_errors:
                logger.error(f"Failed to initialize subscription state: {e}", exc_info=True)
            await self._call_error_handler(e)

    async def poll(self) -> None:
        """Run one poll cycle: fetch, diff and dispatch.

        Fetch and handler errors propagate to the caller.
        """
        if not self._running:
            return

        events: List[ChangeEvent] = []
        for event_type in self.event_types:
            event = await self.check_for_changes(event_type)
            if event is not None:
                events.append(event)

        for event in events:
            await self.process_event(event)

    async def check_for_changes(self, event_type: EventType) -> Optional[ChangeEvent]:
        records = await self._fetch(event_type)
        if event_type == EventType.PLAYERS:
            return self._diff_players(records)
        if event_type == EventType.VEHICLES:
            return self._diff_vehicles(records)
        return self._diff_log(event_type, records)

    async def process_event(self, event: ChangeEvent) -> None:
        if self.config.filter_func is not None and not self.config.filter_func(event):
            return

        handler = self.handlers.get(event.type)
        if handler is None:
            return
        result = handler(event.data)
        if inspect.isawaitable(result):
            await result

    def _diff_players(self, players: List[Player]) -> Optional[ChangeEvent]:
        current = {p.player: p for p in players}
        previous = self.state.players

        changes = [PlayerChange(player=p, type="join") for key, p in current.items() if key not in previous]
        changes += [PlayerChange(player=p, type="leave") for key, p in previous.items() if key not in current]

        self.state.players = current
        return ChangeEvent(EventType.PLAYERS, changes) if changes else None

    def _diff_vehicles(self, vehicles: List[Vehicle]) -> Optional[ChangeEvent]:
        current = {v.key: v for v in vehicles}
        previous = self.state.vehicles

        changes = [VehicleChange(vehicle=v, type="spawn") for key, v in current.items() if key not in previous]
        changes += [VehicleChange(vehicle=v, type="despawn") for key, v in previous.items() if key not in current]

        self.state.vehicles = current
        return ChangeEvent(EventType.VEHICLES, changes) if changes else None

    def _diff_log(self, event_type: EventType, logs: List[Any]) -> Optional[ChangeEvent]:
        # Logs arrive newest first
        if not logs:
            return None

        latest = logs[0].timestamp
        if latest <= self.state.log_times[event_type]:
            return None

        self.state.log_times[event_type] = latest
        cutoff = latest - self.config.poll_interval
        return ChangeEvent(event_type, [entry for entry in logs if entry.timestamp > cutoff])

    async def _fetch(self, event_type: EventType) -> List[Any]:
        fetch = getattr(self.client, _FETCHERS[event_type])
        return await fetch(_LIVE)

    async def _timer_loop(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.poll_interval)
                return
            except asyncio.TimeoutError:
                pass
            self._on_tick()

    def _on_tick(self) -> None:
        if not self._running or self._poll_in_flight:
            return
        # A poll left running by stop() may outlive a restart
        if self._poll_task is not None and not self._poll_task.done():
            return
        if time.monotonic() < self._next_allowed_poll:
            return

        self._poll_in_flight = True
        self._poll_task = asyncio.create_task(self._run_poll(), name="erlc-subscription-poll")

    async def _run_poll(self) -> None:
        try:
            await self.poll()
        except Exception as e:
            if self.config.retry_on_error:
                self._next_allowed_poll = time.monotonic() + max(0.0, self.config.retry_interval)
            if self.config.log_errors:
                logger.error(f"Event polling error: {e}", exc_info=True)
            await self._call_error_handler(e)
        finally:
            self._poll_in_flight = False

    async def _call_error_handler(self, error: BaseException) -> None:
        if self.config.error_handler is None:
            return
        try:
            result = self.config.error_handler(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Subscription error handler raised")
