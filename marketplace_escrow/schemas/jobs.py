"""Scheduled job result schemas."""
from pydantic import BaseModel, Field


class SettlementResult(BaseModel):
    processed: int
    released: int
    failed: int
    errors: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    deleted_count: int
    deleted_ids: list[int] = Field(default_factory=list)
