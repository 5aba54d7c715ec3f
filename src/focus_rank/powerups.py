"""Power-up catalog and activation rules for focus-rank."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from focus_rank.errors import PowerUpNotFound


class BoostType(str, Enum):
    XP = "xp_boost"
    COINS = "coin_boost"
    ALL = "all_boost"


@dataclass(frozen=True)
class PowerUpDef:
    id: str
    name: str
    boost: BoostType
    multiplier: float
    duration_minutes: int
    cost: int


@dataclass
class OwnedPowerUp:
    """One purchased power-up. Inventory until activated, then active until expiry."""

    id: int
    power_up_id: str
    purchased_at: datetime
    activated_at: datetime | None = None
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is not None and now < self.expires_at

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def to_dict(self) -> dict:
        definition = POWER_UPS.get(self.power_up_id)
        return {
            "id": self.power_up_id,
            "name": definition.name if definition else self.power_up_id,
            "type": definition.boost.value if definition else None,
            "multiplier": definition.multiplier if definition else 1.0,
            "status": "active" if self.activated_at else "inventory",
            "purchasedAt": self.purchased_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
        }


POWER_UPS: dict[str, PowerUpDef] = {
    p.id: p
    for p in [
        PowerUpDef("xp_boost_small", "Small XP Boost", BoostType.XP, 1.5, 60, 100),
        PowerUpDef("xp_boost_large", "Large XP Boost", BoostType.XP, 2.0, 120, 250),
        PowerUpDef("coin_boost_small", "Small Coin Boost", BoostType.COINS, 1.5, 60, 150),
        PowerUpDef("coin_boost_large", "Large Coin Boost", BoostType.COINS, 2.0, 120, 300),
        PowerUpDef("all_boost", "Ultimate Boost", BoostType.ALL, 1.75, 60, 500),
    ]
}


def get_power_up(power_up_id: str) -> PowerUpDef:
    """Look up a catalog entry. Raises PowerUpNotFound for unknown ids."""
    try:
        return POWER_UPS[power_up_id]
    except KeyError:
        raise PowerUpNotFound(f"Invalid power-up ID: {power_up_id}") from None


def activation_window(power_up_id: str, now: datetime) -> tuple[datetime, datetime]:
    """Return (activated_at, expires_at) for activating a power-up at now."""
    definition = get_power_up(power_up_id)
    return now, now + timedelta(minutes=definition.duration_minutes)


def visible_power_ups(owned: list[OwnedPowerUp], now: datetime) -> list[OwnedPowerUp]:
    """Inventory items plus unexpired active ones. Expired power-ups are dropped."""
    return [p for p in owned if not p.is_expired(now)]


def active_multipliers(owned: list[OwnedPowerUp], now: datetime) -> tuple[float, float]:
    """Combined (xp_multiplier, coin_multiplier) of the power-ups active at now."""
    xp_mult = 1.0
    coin_mult = 1.0
    for item in owned:
        if not item.is_active(now):
            continue
        definition = POWER_UPS.get(item.power_up_id)
        if definition is None:
            continue
        if definition.boost in (BoostType.XP, BoostType.ALL):
            xp_mult *= definition.multiplier
        if definition.boost in (BoostType.COINS, BoostType.ALL):
            coin_mult *= definition.multiplier
    return xp_mult, coin_mult
