# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Persisted documents
===================

Pydantic v2 models for the two collections the queue owns:

- MessageJob: one active outbound message (`_id` is the caller's dedupe key).
- DeliveryLogEntry: immutable record appended once a job is resolved successfully.

Documents are stored with snake_case keys and UTC datetimes. `status` values are
persisted as plain strings.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .core.types import ROMappingStrAny

# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #


class JobStatus(str, Enum):
    """Lifecycle of an active job. Success is not a status: the row is deleted."""

    pending = "pending"
    processing = "processing"
    retrying = "retrying"
    failed = "failed"


CLAIMABLE_STATUSES: tuple[str, ...] = (JobStatus.pending.value, JobStatus.retrying.value)


class LogStatus(str, Enum):
    """How a logged job was resolved."""

    sent = "sent"
    sent_via_fallback = "sent_via_fallback"


# --------------------------------------------------------------------------- #
# Payloads
# --------------------------------------------------------------------------- #


class WhatsAppPayload(BaseModel):
    """Primary channel content. `to` is already normalized (digits, international format)."""

    model_config = ConfigDict(extra="forbid")

    to: str | None = None
    body: str = ""

    @property
    def destination(self) -> str | None:
        """Usable destination or None when delivery is impossible."""
        to = (self.to or "").strip()
        return to or None


class PushPayload(BaseModel):
    """Fallback notification content addressed to an entity's registered devices."""

    model_config = ConfigDict(extra="forbid")

    entity_id: str = Field(min_length=1)
    entity_type: str = "clients"
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


# --------------------------------------------------------------------------- #
# Documents
# --------------------------------------------------------------------------- #

_DOC_CONFIG = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True, extra="ignore")


class MessageJob(BaseModel):
    """
    Active job document.

    Fields:
        dedupe_key: Caller-chosen key, stored as `_id`. Immutable.
        payload: WhatsApp destination and body.
        fallback_payload: Optional push content (used when there is no destination,
                          and once more when the job fails terminally).
        status: pending | processing | retrying | failed.
        attempts: Delivery attempts made so far.
        next_attempt_at: The job is claimable only once this has passed.
        locked_by / locked_at / lock_expires_at: Lease fields, None when unlocked.
        last_error: Last failure detail.
    """

    model_config = _DOC_CONFIG

    dedupe_key: str = Field(alias="_id", min_length=1)
    payload: WhatsAppPayload
    fallback_payload: PushPayload | None = None
    status: JobStatus = JobStatus.pending
    attempts: int = Field(default=0, ge=0)
    created_at: datetime
    next_attempt_at: datetime
    locked_by: str | None = None
    locked_at: datetime | None = None
    lock_expires_at: datetime | None = None
    last_error: str | None = None

    @classmethod
    def new(
        cls,
        dedupe_key: str,
        payload: WhatsAppPayload,
        fallback_payload: PushPayload | None,
        *,
        now: datetime,
    ) -> MessageJob:
        return cls(
            dedupe_key=dedupe_key,
            payload=payload,
            fallback_payload=fallback_payload,
            status=JobStatus.pending,
            attempts=0,
            created_at=now,
            next_attempt_at=now,
        )

    @classmethod
    def from_doc(cls, doc: ROMappingStrAny) -> MessageJob:
        return cls.model_validate(dict(doc))

    def to_doc(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def is_claimable(self, now: datetime) -> bool:
        return self.status in CLAIMABLE_STATUSES and self.next_attempt_at <= now


class DeliveryLogEntry(BaseModel):
    """Append-only history row. `_id` is the dedupe key, so a job is logged at most once."""

    model_config = _DOC_CONFIG

    dedupe_key: str = Field(alias="_id")
    payload: WhatsAppPayload
    fallback_payload: PushPayload | None = None
    status: LogStatus
    attempts: int = 0
    created_at: datetime | None = None
    processed_at: datetime
    processed_by: str | None = None
    provider_message_id: str | None = None
    last_error: str | None = None

    @classmethod
    def from_job(
        cls,
        job: MessageJob,
        *,
        status: LogStatus,
        now: datetime,
        worker_id: str | None = None,
        provider_message_id: str | None = None,
    ) -> DeliveryLogEntry:
        return cls(
            dedupe_key=job.dedupe_key,
            payload=job.payload,
            fallback_payload=job.fallback_payload,
            status=status,
            attempts=job.attempts,
            created_at=job.created_at,
            processed_at=now,
            processed_by=worker_id,
            provider_message_id=provider_message_id,
            last_error=job.last_error,
        )

    @classmethod
    def from_doc(cls, doc: ROMappingStrAny) -> DeliveryLogEntry:
        return cls.model_validate(dict(doc))

    def to_doc(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
