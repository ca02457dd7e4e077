"""
Object storage and document write monitoring.

Turns raw storage/document notifications into security events:

- uploads under security-sensitive prefixes (file_upload, low)
- uploads above the size limit (oversized_file_upload, high)
- writes carrying unusually large list fields (high_volume_operation, medium)
- review create/update/delete (review_<op>, low)
"""

from typing import Any

from inkguard.config import settings
from inkguard.infrastructure.audit import SecurityEventLog, security_event_log

SECURITY_PATH_PREFIXES = ("artists/", "users/", "chat/")
REVIEWS_COLLECTION = "reviews"


def is_high_volume_operation(after: dict[str, Any] | None, max_length: int) -> bool:
    if not after:
        return False
    return any(isinstance(value, list) and len(value) > max_length for value in after.values())


def write_operation(before: dict | None, after: dict | None) -> str:
    if before is None:
        return "create"
    if after is None:
        return "delete"
    return "update"


class StorageMonitor:
    def __init__(
        self,
        event_log: SecurityEventLog | None = None,
        max_upload_bytes: int | None = None,
        high_volume_length: int | None = None,
    ):
        self.event_log = event_log or security_event_log
        self.max_upload_bytes = max_upload_bytes or settings.MAX_UPLOAD_BYTES
        self.high_volume_length = high_volume_length or settings.HIGH_VOLUME_ARRAY_LENGTH

    async def handle_file_finalized(
        self,
        name: str,
        size: int,
        content_type: str | None = None,
        bucket: str | None = None,
    ) -> list[str]:
        """
        Record events for a finalized object.

        Returns:
            Event types that were recorded
        """
        recorded = []

        if name.startswith(SECURITY_PATH_PREFIXES):
            await self.event_log.record(
                "file_upload",
                resource_ref=name,
                metadata={
                    "bucket": bucket,
                    "content_type": content_type,
                    "size": size,
                    "security_path": True,
                },
            )
            recorded.append("file_upload")

        if size > self.max_upload_bytes:
            await self.event_log.record(
                "oversized_file_upload",
                severity="high",
                resource_ref=name,
                metadata={"size": size, "max_allowed": self.max_upload_bytes},
            )
            recorded.append("oversized_file_upload")

        return recorded

    async def handle_document_written(
        self,
        collection: str,
        document_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        actor_id: str | None = None,
    ) -> list[str]:
        recorded = []
        resource_ref = f"{collection}/{document_id}"

        if collection == REVIEWS_COLLECTION:
            operation = write_operation(before, after)
            source = after or before or {}
            await self.event_log.record(
                f"review_{operation}",
                subject_id=actor_id,
                target_id=source.get("artistId") or source.get("artist_id"),
                resource_ref=resource_ref,
                metadata={"reviewer_id": source.get("customerId") or source.get("customer_id")},
            )
            recorded.append(f"review_{operation}")

        if is_high_volume_operation(after, self.high_volume_length):
            await self.event_log.record(
                "high_volume_operation",
                severity="medium",
                subject_id=actor_id or "anonymous",
                resource_ref=resource_ref,
                metadata={"collection": collection},
            )
            recorded.append("high_volume_operation")

        return recorded


storage_monitor = StorageMonitor()
