"""Pydantic bases for API bodies and parsed gateway events; all forbid extra fields."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Response bodies."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """
    Buyer request bodies.

    Prices, statuses and owners are derived server-side, so a body carrying
    them is rejected with a 422 rather than silently ignored.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class EventVariant(BaseModel):
    """A verified gateway event after parsing. Immutable once dispatched."""

    model_config = ConfigDict(extra="forbid", frozen=True)
