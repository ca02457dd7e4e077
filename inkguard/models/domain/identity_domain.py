from datetime import datetime, timedelta

from pydantic import BaseModel


class EmailIndexEntry(BaseModel):
    """email_index row: normalized email -> owning identity."""

    email_normalized: str
    identity_id: str
    masked_email: str
    created_at: datetime


class EmailChangeRecord(BaseModel):
    """Sliding-window counter of email changes for one identity."""

    identity_id: str
    change_count: int
    last_change: datetime
    previous_email_masked: str | None = None
    new_email_masked: str | None = None

    def is_within_window(self, now: datetime, window: timedelta) -> bool:
        return now - self.last_change <= window

    def next_count(self, now: datetime, window: timedelta) -> int:
        """Count after one more change: increments inside the window, else resets to 1."""
        return self.change_count + 1 if self.is_within_window(now, window) else 1
