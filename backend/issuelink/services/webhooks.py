"""Inbound webhook pipeline: verify, deduplicate, parse, apply, acknowledge.

A delivery is acknowledged only once its outcome is committed. The
(provider, delivery_id) unique key makes re-deliveries no-ops; a delivery
whose handler died before finishing stays 'received' and is picked up again
by a later re-delivery once it is older than the reclaim window. Until then a
re-delivery is answered as in flight so the provider keeps retrying. A failed
apply rolls back and releases the row, so the next retry starts over.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from issuelink.core.errors import CoreError
from issuelink.core.time import utcnow
from issuelink.models.webhook_event import EVENT_APPLIED, EVENT_IGNORED, EVENT_RECEIVED, EVENT_UNROUTABLE
from issuelink.providers.base import IGNORED, DomainEvent
from issuelink.providers.registry import ProviderRegistry
from issuelink.repos.projects import resolve_project
from issuelink.repos.webhook_events import (
    finish_delivery,
    get_delivery,
    reclaim_stale_delivery,
    record_delivery,
    release_delivery,
)
from issuelink.services.todo_store import SqlTodoStore, TodoStore

logger = logging.getLogger(__name__)


class IngestOutcome(str, enum.Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNROUTABLE = "unroutable"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class IngestResult:
    outcome: IngestOutcome
    provider: str
    delivery_id: str


class WebhookPipeline:
    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        reclaim_after_seconds: int = 300,
        store_factory: Callable[[Session], TodoStore] = SqlTodoStore,
    ):
        self.registry = registry
        self.reclaim_after = timedelta(seconds=reclaim_after_seconds)
        self.store_factory = store_factory

    def ingest(
        self,
        db: Session,
        *,
        provider: str,
        raw_payload: bytes,
        headers: Mapping[str, str],
    ) -> IngestResult:
        """Raises Unauthenticated (nothing persisted) or MalformedResponse.

        Anything raised while routing or applying releases the delivery and propagates.
        """

        adapter = self.registry.get(provider)
        try:
            verified = adapter.verify_webhook(raw_payload, headers)
        except CoreError as e:
            logger.warning("Rejected %s webhook: %s", adapter.name, e)
            raise

        row = record_delivery(
            db,
            provider=adapter.name,
            delivery_id=verified.delivery_id,
            event_name=verified.event_name,
            payload=verified.payload,
        )
        if row is None:
            existing = get_delivery(db, provider=adapter.name, delivery_id=verified.delivery_id)
            if existing is not None and existing.status != EVENT_RECEIVED:
                logger.info("Duplicate %s delivery %s discarded", adapter.name, verified.delivery_id)
                return IngestResult(IngestOutcome.DUPLICATE, adapter.name, verified.delivery_id)
            if existing is None or not self._reclaim(db, existing):
                logger.info("%s delivery %s is still being processed", adapter.name, verified.delivery_id)
                return IngestResult(IngestOutcome.IN_FLIGHT, adapter.name, verified.delivery_id)
            logger.warning("Reclaiming stalled %s delivery %s", adapter.name, verified.delivery_id)
            row = existing
        event_id = row.id

        try:
            event = adapter.parse_webhook(verified)
        except CoreError as e:
            logger.error("Malformed %s webhook %s: %s", adapter.name, verified.delivery_id, e)
            finish_delivery(db, event_id=event_id, status=EVENT_IGNORED, error=f"{e.kind}: {e}")
            raise

        if event.kind == IGNORED:
            finish_delivery(db, event_id=event_id, status=EVENT_IGNORED, board_id=event.board_id)
            return IngestResult(IngestOutcome.IGNORED, adapter.name, verified.delivery_id)

        try:
            return self._route_and_apply(db, adapter.name, verified.delivery_id, event_id, event)
        except Exception:
            db.rollback()
            release_delivery(db, event_id=event_id)
            logger.exception("Failed to apply %s delivery %s; released for retry", adapter.name, verified.delivery_id)
            raise

    def _route_and_apply(
        self, db: Session, provider: str, delivery_id: str, event_id: uuid.UUID, event: DomainEvent
    ) -> IngestResult:
        project = resolve_project(db, provider=provider, board_id=event.board_id)
        if project is None:
            logger.warning("Parked unroutable %s delivery %s (board=%s)", provider, delivery_id, event.board_id)
            finish_delivery(
                db,
                event_id=event_id,
                status=EVENT_UNROUTABLE,
                board_id=event.board_id,
                error="No project linked to this board",
            )
            return IngestResult(IngestOutcome.UNROUTABLE, provider, delivery_id)

        self.store_factory(db).apply(project_id=project.id, event=event)
        finish_delivery(db, event_id=event_id, status=EVENT_APPLIED, board_id=event.board_id, project_id=project.id)
        logger.info("Applied %s %s to project %s", provider, event.kind, project.repo_full_name)
        return IngestResult(IngestOutcome.APPLIED, provider, delivery_id)

    def _reclaim(self, db: Session, existing) -> bool:
        return reclaim_stale_delivery(db, event_id=existing.id, stale_before=utcnow() - self.reclaim_after)
