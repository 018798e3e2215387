"""Runtime statistics for monitoring."""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional


@dataclass
class DispatcherStats:
    received: int = 0  # added changes picked up
    ignored: int = 0  # modified/removed changes
    invalid: int = 0  # records failing validation
    unresolved: int = 0  # recipient or event not found
    skipped: int = 0  # recipient without a push token
    delivered: int = 0
    failed: int = 0  # gateway reported failure
    errors: int = 0  # unexpected exceptions inside a reaction
    in_flight: int = 0
    started_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        return data
