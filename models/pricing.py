"""
Pricing decision model produced by the pricing policy.
"""

from pydantic import BaseModel

from .enums import ActionType


class PriceDecision(BaseModel):
    """A proposed price change for one listing, not yet applied."""

    listing_id: str
    action: ActionType
    old_price: float
    new_price: float
    reason: str
    elasticity: float | None = None  # Only set by the long-term variant

    @property
    def delta(self) -> float:
        return self.new_price - self.old_price
