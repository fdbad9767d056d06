"""Errors raised by the settlement core.

Callers on the HTTP side translate these into status codes
(see :mod:`beergame.api.errors`).
"""

from __future__ import annotations

from typing import Any, Optional


class BeerGameError(Exception):
    """Base class for every error the core raises on purpose."""


class GameNotFound(BeerGameError):
    def __init__(self, game_ref: Any):
        self.game_ref = game_ref
        super().__init__(f"Game not found: {game_ref}")


class GameNotActive(BeerGameError):
    def __init__(self, game_id: int, status: Any):
        self.game_id = game_id
        self.status = status
        super().__init__(f"Game {game_id} does not accept this while {status}")


class GameNotReady(BeerGameError):
    """Raised when a game cannot start because roles are still open."""


class InvalidQuantity(BeerGameError):
    def __init__(self, quantity: Any):
        self.quantity = quantity
        super().__init__(f"Invalid order quantity: {quantity!r}")


class RoleNotFound(BeerGameError):
    def __init__(self, role: Any, game_id: Optional[int] = None):
        self.role = role
        self.game_id = game_id
        suffix = f" in game {game_id}" if game_id is not None else ""
        super().__init__(f"Role not found: {role}{suffix}")


class RoleTaken(BeerGameError):
    def __init__(self, role: Any, game_id: int):
        self.role = role
        self.game_id = game_id
        super().__init__(f"A {role} already exists in game {game_id}")


class StorageError(BeerGameError):
    """Generic failure reported by the persistence layer."""


class SettlementFailed(BeerGameError):
    """Wraps whatever broke while settling a week; safe to retry."""

    def __init__(self, game_id: int, cause: BaseException):
        self.game_id = game_id
        self.cause = cause
        super().__init__(f"Settlement failed for game {game_id}: {cause}")
