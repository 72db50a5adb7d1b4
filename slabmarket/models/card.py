from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, Field


class CardRecord(BaseModel):
    """Canonical catalog entry as stored in the ``cards`` table."""

    name: str
    set_name: str
    card_number: Optional[str] = None
    slug: str
    year: Optional[int] = None
    rarity: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class DuplicateCandidate(BaseModel):
    """An existing card scored against an incoming one. Never persisted."""

    card: dict
    similarity: float = Field(..., ge=0.0, le=1.0)
    nameSimilarity: float = Field(..., ge=0.0, le=1.0)
    numberSimilarity: float = Field(..., ge=0.0, le=1.0)


@dataclass
class ImportStats:
    """Counters for one import stage, set or run. Merge with ``+``."""

    total: int = 0
    inserted: int = 0
    skipped: int = 0
    validation_errors: int = 0
    duplicate_detections: int = 0
    image_uploads: int = 0
    image_upload_errors: int = 0
    sets_processed: int = 0
    sets_failed: int = 0
    errors: List[str] = field(default_factory=list)

    MAX_ERRORS = 10

    def add_error(self, message: str) -> None:
        if len(self.errors) < self.MAX_ERRORS:
            self.errors.append(message)

    def merge(self, other: "ImportStats") -> "ImportStats":
        merged = ImportStats(
            total=self.total + other.total,
            inserted=self.inserted + other.inserted,
            skipped=self.skipped + other.skipped,
            validation_errors=self.validation_errors + other.validation_errors,
            duplicate_detections=self.duplicate_detections
            + other.duplicate_detections,
            image_uploads=self.image_uploads + other.image_uploads,
            image_upload_errors=self.image_upload_errors + other.image_upload_errors,
            sets_processed=self.sets_processed + other.sets_processed,
            sets_failed=self.sets_failed + other.sets_failed,
        )
        for message in self.errors + other.errors:
            merged.add_error(message)
        return merged

    __add__ = merge

