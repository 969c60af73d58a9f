"""Background tasks of the core module."""

import structlog
from celery import shared_task
from django.db import transaction

from modules.core.models import EventStatus, OutboxEvent
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)

OUTBOX_BATCH_SIZE = 100


@shared_task(name="core.relay_outbox_events")
def relay_outbox_events(batch_size: int = OUTBOX_BATCH_SIZE) -> dict:
    """Deliver pending outbox rows to in-process subscribers.

    Rows are locked with ``skip_locked`` so concurrent relays never deliver
    the same event twice.  A failing handler marks only its own row as
    failed; the batch continues.
    """
    published = failed = 0
    with transaction.atomic():
        rows = list(
            OutboxEvent.objects.select_for_update(skip_locked=True)
            .filter(status=EventStatus.PENDING)
            .order_by("created_at")[:batch_size]
        )
        for row in rows:
            try:
                event_bus.publish(row.event_type, row.payload)
            except Exception as exc:
                logger.exception(
                    "outbox.relay_failed", event_id=str(row.id), event_type=row.event_type
                )
                row.mark_as_failed(str(exc))
                failed += 1
            else:
                row.mark_as_published()
                published += 1

    logger.info("outbox.relayed", published=published, failed=failed)
    return {"published": published, "failed": failed}
