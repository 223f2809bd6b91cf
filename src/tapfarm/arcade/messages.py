"""Arcade WebSocket protocol.

Client -> Server:
    {"type": "player_state" | "game_start" | "ball_hit" | "ball_dropped" | "energy_recharge"}

Server -> Client:
    {"type": "player_state", "payload": {"total_energy", "remaining_energy"}}
    {"type": "game_state", "payload": {"total_score", "current_hit_score", "hit_counter",
                                       "total_energy", "remaining_energy", "is_playing"}}
    {"type": "game_over", "payload": {"final_score", "final_hit_counter",
                                      "remaining_energy", "is_playing"}}
    {"type": "error", "payload": {"message", "next_available_energy_unix"?}}
    {"type": "energy_recharge", "payload": {"energy_recharge_status"}}
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel


class EventType(str, Enum):
    PLAYER_STATE = "player_state"
    GAME_START = "game_start"
    BALL_HIT = "ball_hit"
    BALL_DROPPED = "ball_dropped"
    ENERGY_RECHARGE = "energy_recharge"


class OutgoingMessage(BaseModel):
    """Base for server messages; fields become the payload."""

    message_type: ClassVar[str]

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.message_type, "payload": self.model_dump(exclude_none=True)}


class PlayerStateMessage(OutgoingMessage):
    message_type: ClassVar[str] = "player_state"

    total_energy: int
    remaining_energy: int


class GameStateMessage(OutgoingMessage):
    message_type: ClassVar[str] = "game_state"

    total_score: int
    current_hit_score: int
    hit_counter: int
    total_energy: int
    remaining_energy: int
    is_playing: bool


class GameOverMessage(OutgoingMessage):
    message_type: ClassVar[str] = "game_over"

    final_score: int
    final_hit_counter: int
    remaining_energy: int
    is_playing: bool = False


class ErrorMessage(OutgoingMessage):
    message_type: ClassVar[str] = "error"

    message: str
    next_available_energy_unix: int | None = None


class EnergyRechargeMessage(OutgoingMessage):
    message_type: ClassVar[str] = "energy_recharge"

    energy_recharge_status: str = "success"
