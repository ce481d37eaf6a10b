"""Convenience helpers built on top of :class:`ERLCClient`.

These wrap common moderation tasks (messages, kicks, bans, teleports) and
simple queries over players and logs.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from erlc.models import CommandLog, JoinLog, KillLog, ModCallLog, Player, split_player

if TYPE_CHECKING:
    from erlc.client import ERLCClient


@dataclass(frozen=True)
class PlayerName:
    name: str
    id: str


@dataclass
class ServerStats:
    """Snapshot of the server plus activity counts over a recent window."""

    players: int
    max_players: int
    name: str
    owner_id: Optional[int]
    recent_joins: int
    recent_kills: int
    recent_commands: int
    recent_mod_calls: int
    unique_players: int

    def to_dict(self) -> dict:
        return {
            "current": {
                "players": self.players,
                "max_players": self.max_players,
                "name": self.name,
                "owner_id": self.owner_id,
            },
            "recent": {
                "joins": self.recent_joins,
                "kills": self.recent_kills,
                "commands": self.recent_commands,
                "mod_calls": self.recent_mod_calls,
                "unique_players": self.unique_players,
            },
        }


def _cutoff(seconds: float) -> float:
    return time.time() - seconds


def _matches(value: Optional[str], query: str) -> bool:
    return query in (value or "").lower()


class PRCHelpers:
    """Higher-level operations for a single server.

    Example:
        helpers = PRCHelpers(client)
        await helpers.send_message("Server restart in 5 minutes")
        staff = await helpers.get_staff_players()
    """

    # Seconds between checks while waiting for players
    PLAYER_POLL_INTERVAL = 1.0
    COUNT_POLL_INTERVAL = 2.0

    def __init__(self, client: "ERLCClient"):
        self.client = client

    async def find_player(self, name_or_id: str) -> Optional[Player]:
        """Find the first player whose ``Name:ID`` contains the query (case-insensitive)."""
        query = (name_or_id or "").lower()
        if not query:
            return None
        players = await self.client.get_players()
        return next((p for p in players if _matches(p.player, query)), None)

    async def get_players_by_team(self, team: str) -> List[Player]:
        team = (team or "").lower()
        players = await self.client.get_players()
        return [p for p in players if (p.team or "").lower() == team]

    async def get_staff_players(self) -> List[Player]:
        players = await self.client.get_players()
        return [p for p in players if p.permission and p.permission != "Normal"]

    async def get_online_count(self) -> int:
        status = await self.client.get_server_status()
        return status.current_players

    async def is_server_full(self) -> bool:
        status = await self.client.get_server_status()
        return status.current_players >= status.max_players

    async def send_message(self, message: str) -> None:
        await self.client.execute_command(f":h {message}")

    async def send_pm(self, player: str, message: str) -> None:
        await self.client.execute_command(f":pm {player} {message}")

    async def kick_player(self, player: str, reason: Optional[str] = None) -> None:
        await self.client.execute_command(f":kick {player} {reason}" if reason else f":kick {player}")

    async def ban_player(self, player: str, reason: Optional[str] = None) -> None:
        await self.client.execute_command(f":ban {player} {reason}" if reason else f":ban {player}")

    async def teleport_player(self, player: str, target: str) -> None:
        await self.client.execute_command(f":tp {player} {target}")

    async def set_team(self, player: str, team: str) -> None:
        await self.client.execute_command(f":team {player} {team}")

    async def get_recent_joins(self, minutes: float = 10) -> List[JoinLog]:
        cutoff = _cutoff(minutes * 60)
        logs = await self.client.get_join_logs()
        return [log for log in logs if log.join and log.timestamp > cutoff]

    async def get_recent_leaves(self, minutes: float = 10) -> List[JoinLog]:
        cutoff = _cutoff(minutes * 60)
        logs = await self.client.get_join_logs()
        return [log for log in logs if not log.join and log.timestamp > cutoff]

    async def get_player_kills(self, player: str, hours: float = 1) -> List[KillLog]:
        cutoff = _cutoff(hours * 3600)
        query = (player or "").lower()
        logs = await self.client.get_kill_logs()
        return [log for log in logs if _matches(log.killer, query) and log.timestamp > cutoff]

    async def get_player_deaths(self, player: str, hours: float = 1) -> List[KillLog]:
        cutoff = _cutoff(hours * 3600)
        query = (player or "").lower()
        logs = await self.client.get_kill_logs()
        return [log for log in logs if _matches(log.killed, query) and log.timestamp > cutoff]

    async def get_player_commands(self, player: str, hours: float = 1) -> List[CommandLog]:
        cutoff = _cutoff(hours * 3600)
        query = (player or "").lower()
        logs = await self.client.get_command_logs()
        return [log for log in logs if _matches(log.player, query) and log.timestamp > cutoff]

    async def get_unanswered_mod_calls(self, hours: float = 1) -> List[ModCallLog]:
        cutoff = _cutoff(hours * 3600)
        logs = await self.client.get_mod_calls()
        return [log for log in logs if not log.moderator and log.timestamp > cutoff]

    async def wait_for_player(self, name_or_id: str, timeout: float = 30.0) -> Player:
        """Poll until a matching player is in the server.

        Raises:
            TimeoutError: If no match is found within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            player = await self.find_player(name_or_id)
            if player is not None:
                return player
            await asyncio.sleep(self.PLAYER_POLL_INTERVAL)
        raise TimeoutError(f"Player {name_or_id} not found within {timeout}s")

    async def wait_for_player_count(self, count: int, timeout: float = 60.0) -> None:
        """Poll until at least ``count`` players are online.

        Raises:
            TimeoutError: If the count is not reached within ``timeout`` seconds
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if await self.get_online_count() >= count:
                return
            await asyncio.sleep(self.COUNT_POLL_INTERVAL)
        raise TimeoutError(f"Server did not reach {count} players within {timeout}s")

    @staticmethod
    def format_player(player: str) -> PlayerName:
        """Split a ``Name:ID`` string.

        Raises:
            ValueError: If the string is not exactly ``Name:ID``
        """
        name, user_id = split_player(player)
        if user_id is None or ":" in user_id:
            raise ValueError(f'Invalid player format: {player}. Expected "Name:ID"')
        return PlayerName(name=name, id=user_id)

    @staticmethod
    def format_timestamp(timestamp: float) -> str:
        return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def format_uptime(start_timestamp: float) -> str:
        uptime = max(0, int(time.time() - start_timestamp))
        return f"{uptime // 3600}h {uptime % 3600 // 60}m"

    async def kick_all_from_team(self, team: str, reason: Optional[str] = None) -> List[str]:
        """Kick every player on a team with a single command.

        Returns:
            The ``Name:ID`` strings of the players that were targeted
        """
        players = await self.get_players_by_team(team)
        names = self._usernames(players)
        if names:
            target = ",".join(names)
            await self.client.execute_command(f":kick {target} {reason}" if reason else f":kick {target}")
        return [p.player for p in players]

    async def message_all_staff(self, message: str) -> None:
        names = self._usernames(await self.get_staff_players())
        if names:
            await self.client.execute_command(f":pm {','.join(names)} {message}")

    async def get_server_stats(self, hours: float = 24) -> ServerStats:
        cutoff = _cutoff(hours * 3600)

        status, join_logs, kill_logs, command_logs, mod_calls = await asyncio.gather(
            self.client.get_server_status(),
            self.client.get_join_logs(),
            self.client.get_kill_logs(),
            self.client.get_command_logs(),
            self.client.get_mod_calls(),
        )

        recent_joins = [log for log in join_logs if log.join and log.timestamp > cutoff]
        return ServerStats(
            players=status.current_players,
            max_players=status.max_players,
            name=status.name,
            owner_id=status.owner_id,
            recent_joins=len(recent_joins),
            recent_kills=sum(1 for log in kill_logs if log.timestamp > cutoff),
            recent_commands=sum(1 for log in command_logs if log.timestamp > cutoff),
            recent_mod_calls=sum(1 for log in mod_calls if log.timestamp > cutoff),
            unique_players=len({log.player for log in recent_joins}),
        )

    def _usernames(self, players: List[Player]) -> List[str]:
        names = []
        for player in players:
            try:
                names.append(self.format_player(player.player).name)
            except ValueError:
                continue
        return names
