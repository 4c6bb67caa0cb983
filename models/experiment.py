"""
Data models for A/B content experiments and their deferred conclusions.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ConclusionStatus, ExperimentStatus


class Variant(BaseModel):
    """Alternative title/description pair tested against a listing."""

    title: str
    description: str


class VariantResult(BaseModel):
    """Outcome of one completed variant run."""

    variant_index: int
    title: str
    description: str
    conversion: float
    recorded_at: datetime = Field(default_factory=datetime.now)


class ExperimentState(BaseModel):
    """
    Authoritative per-listing experiment state.

    Lifecycle: idle -> running(i) -> idle(result i) -> ... -> concluded,
    or cancelled at any point. The catalog's ``is_experiment_running`` flag
    is only a projection of ``is_running``.
    """

    listing_id: str
    variants: list[Variant] = Field(default_factory=list)
    tested_count: int = 0
    results: list[VariantResult] = Field(default_factory=list)
    is_running: bool = False
    current_variant_index: int | None = None
    status: ExperimentStatus = ExperimentStatus.IDLE
    winner: VariantResult | None = None
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (ExperimentStatus.CONCLUDED, ExperimentStatus.CANCELLED)

    @property
    def is_exhausted(self) -> bool:
        return self.tested_count >= len(self.variants)

    def has_result_for(self, variant_index: int) -> bool:
        return any(r.variant_index == variant_index for r in self.results)

    def best_result(self) -> VariantResult | None:
        """Highest conversion result; the first one seen wins ties."""
        if not self.results:
            return None
        return max(self.results, key=lambda r: r.conversion)

    def record_result(self, variant_index: int, conversion: float) -> VariantResult:
        """Append the result for the running variant and return to idle."""
        variant = self.variants[variant_index]
        result = VariantResult(
            variant_index=variant_index,
            title=variant.title,
            description=variant.description,
            conversion=conversion,
        )
        self.results.append(result)
        self.tested_count += 1
        self.is_running = False
        self.current_variant_index = None
        self.status = ExperimentStatus.IDLE
        self.updated_at = datetime.now()
        return result


class PendingConclusion(BaseModel):
    """Durable "due at" record for a running variant's conclusion."""

    listing_id: str
    variant_index: int
    due_at: datetime
    status: ConclusionStatus = ConclusionStatus.PENDING
    last_error: str | None = None

    @property
    def key(self) -> str:
        return conclusion_key(self.listing_id, self.variant_index)


def conclusion_key(listing_id: str, variant_index: int) -> str:
    return f"{listing_id}:{variant_index}"
