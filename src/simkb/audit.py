"""Audit notifications for knowledge-base mutations.

Sinks are fire-and-forget: a failing sink is logged and never fails or
rolls back the mutation it reports.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    """One mutation: what happened to which entity in which tenant."""

    action: str  # e.g. kb.source.create, kb.graph.extract
    tenant_id: str
    entity: str  # source | chunk | graph | projection
    entity_id: str | None = None
    actor: str | None = None
    details: dict = field(default_factory=dict)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Default sink: one INFO line per event on the ``simkb.audit`` logger."""

    def record(self, event: AuditEvent) -> None:
        logger.info(
            "audit action=%s tenant=%s entity=%s id=%s actor=%s details=%s",
            event.action,
            event.tenant_id,
            event.entity,
            event.entity_id,
            event.actor,
            event.details,
        )


def notify(sink: AuditSink | None, event: AuditEvent) -> None:
    """Deliver *event* to *sink*; sink errors are logged, not raised."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception:
        logger.exception("Audit sink failed for %s (tenant=%s)", event.action, event.tenant_id)
