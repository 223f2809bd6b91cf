"""Per-connection arcade game state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from fastapi import WebSocket

from tapfarm.arcade.energy import EnergyStatus
from tapfarm.arcade.messages import GameOverMessage, GameStateMessage, PlayerStateMessage


@dataclass(eq=False)
class ArcadeSession:
    """One live connection's game.

    Only the task serving the connection mutates these fields.
    """

    websocket: WebSocket
    player_id: int
    total_energy: int = 0
    remaining_energy: int = 0
    is_playing: bool = False
    is_ready_to_play: bool = False
    hit_counter: int = 0
    total_score: int = 0
    current_hit_score: int = 0
    bonus: int = 0
    connected_at: float = field(default_factory=time.time)

    def refresh_energy(self, energy: EnergyStatus) -> None:
        """Take the stored energy as current unless a rally is running."""
        if self.is_playing:
            return
        self.total_energy = energy.total
        self.remaining_energy = energy.remaining
        self.is_ready_to_play = energy.remaining > 0

    def start_rally(self) -> None:
        self.is_playing = True
        self.hit_counter = 0
        self.total_score = 0
        self.current_hit_score = 0
        self.bonus = 0
        self.remaining_energy -= 1

    def register_hit(self, base_reward: int) -> int:
        """Score a hit; the bonus grows by one per hit within the rally."""
        self.current_hit_score = base_reward + self.bonus
        self.bonus += 1
        self.total_score += self.current_hit_score
        self.hit_counter += 1
        return self.current_hit_score

    def end_rally(self) -> None:
        self.is_playing = False

    def player_state(self) -> PlayerStateMessage:
        return PlayerStateMessage(total_energy=self.total_energy, remaining_energy=self.remaining_energy)

    def game_state(self) -> GameStateMessage:
        return GameStateMessage(
            total_score=self.total_score,
            current_hit_score=self.current_hit_score,
            hit_counter=self.hit_counter,
            total_energy=self.total_energy,
            remaining_energy=self.remaining_energy,
            is_playing=self.is_playing,
        )

    def game_over(self) -> GameOverMessage:
        return GameOverMessage(
            final_score=self.total_score,
            final_hit_counter=self.hit_counter,
            remaining_energy=self.remaining_energy,
            is_playing=self.is_playing,
        )
