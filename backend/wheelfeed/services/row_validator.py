"""
Per-row policy gate.

Checks run in order and the first failure wins:
1. row defect from parsing (column count mismatch)
2. part number present
3. category not hidden
4. image reachable (when image validation is on)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .category_policy import CategoryPolicy
from .feed_parser import FeedRow
from .image_probe import ImageProbe


class SkipReason(Enum):
    """Why a row was rejected."""
    ROW_DEFECT = "row defect"
    MISSING_KEY = "missing key"
    HIDDEN_CATEGORY = "hidden category"
    INVALID_IMAGE = "invalid image"


@dataclass
class Validation:
    accepted: bool
    reason: Optional[SkipReason] = None
    detail: Optional[str] = None

    @property
    def counts_as_processed(self) -> bool:
        """Hidden and image skips still protect the part number from deactivation."""
        return self.accepted or self.reason in (SkipReason.HIDDEN_CATEGORY, SkipReason.INVALID_IMAGE)


ACCEPT = Validation(accepted=True)


class RowValidator:
    def __init__(self, policy: CategoryPolicy, probe: Optional[ImageProbe] = None,
                 category_column: str = 'Brand'):
        self.policy = policy
        self.probe = probe
        self.category_column = category_column

    def validate(self, row: FeedRow) -> Validation:
        if row.defect:
            return Validation(False, SkipReason.ROW_DEFECT, row.defect)

        if not row.part_number:
            return Validation(False, SkipReason.MISSING_KEY, "missing PartNumber")

        category = row.get(self.category_column).strip()
        if category and self.policy.is_hidden(category):
            return Validation(False, SkipReason.HIDDEN_CATEGORY, f"hidden category {category}")

        if self.probe is not None and not self.probe.check(row.image_url):
            return Validation(False, SkipReason.INVALID_IMAGE, "invalid or missing image")

        return ACCEPT
