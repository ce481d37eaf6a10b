"""Typed records returned by the PRC API.

Field names follow Python conventions; the remote API's PascalCase names are
kept as aliases, so models validate straight from response JSON and
``model_dump(by_alias=True)`` gives the wire shape back.
"""

from typing import Any, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

M = TypeVar("M", bound="APIModel")


class APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    @classmethod
    def parse_list(cls: Type[M], data: Any) -> List[M]:
        """Validate a JSON array into a list of models (non-lists give [])."""
        if not isinstance(data, list):
            return []
        return [cls.model_validate(item) for item in data]


def split_player(player: str) -> tuple[str, Optional[str]]:
    """Split a ``Name:ID`` player string into its parts."""
    name, sep, user_id = (player or "").partition(":")
    return name, (user_id if sep else None)


class Player(APIModel):
    """A player currently in the server."""

    player: str = Field(alias="Player")
    permission: str = Field(default="Normal", alias="Permission")
    callsign: Optional[str] = Field(default=None, alias="Callsign")
    team: Optional[str] = Field(default=None, alias="Team")

    @property
    def name(self) -> str:
        return split_player(self.player)[0]

    @property
    def user_id(self) -> Optional[str]:
        return split_player(self.player)[1]


class CommandLog(APIModel):
    player: str = Field(alias="Player")
    timestamp: int = Field(alias="Timestamp")
    command: str = Field(alias="Command")


class ModCallLog(APIModel):
    caller: str = Field(alias="Caller")
    moderator: Optional[str] = Field(default=None, alias="Moderator")
    timestamp: int = Field(alias="Timestamp")


class KillLog(APIModel):
    killed: str = Field(alias="Killed")
    killer: str = Field(alias="Killer")
    timestamp: int = Field(alias="Timestamp")


class JoinLog(APIModel):
    join: bool = Field(alias="Join")
    player: str = Field(alias="Player")
    timestamp: int = Field(alias="Timestamp")


class Vehicle(APIModel):
    name: str = Field(alias="Name")
    owner: str = Field(alias="Owner")
    texture: Optional[str] = Field(default=None, alias="Texture")

    @property
    def key(self) -> str:
        """Identity used to track a vehicle between snapshots."""
        return f"{self.owner}:{self.name}"


class ServerStatus(APIModel):
    name: str = Field(default="", alias="Name")
    owner_id: Optional[int] = Field(default=None, alias="OwnerId")
    co_owner_ids: List[int] = Field(default_factory=list, alias="CoOwnerIds")
    current_players: int = Field(default=0, alias="CurrentPlayers")
    max_players: int = Field(default=0, alias="MaxPlayers")
    join_key: Optional[str] = Field(default=None, alias="JoinKey")
    acc_verified_req: Optional[str] = Field(default=None, alias="AccVerifiedReq")
    team_balance: Optional[bool] = Field(default=None, alias="TeamBalance")


class PlayerChange(APIModel):
    """A player joining or leaving, as detected between two snapshots."""

    player: Player
    type: Literal["join", "leave"]


class VehicleChange(APIModel):
    """A vehicle appearing or disappearing between two snapshots."""

    vehicle: Vehicle
    type: Literal["spawn", "despawn"]
