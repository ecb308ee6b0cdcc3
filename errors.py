from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class FormatError(ValueError):
    """Malformed monetary input."""


class PolicyViolation(ValueError):
    """A deletion that breaks a referential rule."""


class StorageFailure(RuntimeError):
    """A collaborator store could not read or write."""


@dataclass(frozen=True)
class MaterializationFailure:
    template_id: Optional[int]
    occurrence: datetime
    reason: str
