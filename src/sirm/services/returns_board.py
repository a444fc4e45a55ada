from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar

from sirm.domain.errors import ValidationError
from sirm.domain.models import ReturnDetails, ReturnRecord, ReturnsSummary, SessionContext, UnitSaleRecord
from sirm.services.reconciliation_service import ReconciliationService
from sirm.services.returns_ledger import ReturnsLedger

log = logging.getLogger("sirm.returns")

T = TypeVar("T")

SEEN_EVENTS_LIMIT = 512


@dataclass(frozen=True)
class ReturnEvent:
    event_id: str
    store_id: int
    return_id: Optional[int] = None
    kind: str = "INSERT"


class ReturnsBoard:
    """Per-session view of the returns ledger.

    The snapshot (`returns`, `summary`) only changes through `refresh()`. Mutations
    run as commands: marked in flight, executed against the store, then followed
    by a re-fetch. Push events are queued and drained into a single refresh.
    """

    def __init__(self, ctx: SessionContext, ledger: ReturnsLedger, stats: ReconciliationService | None = None):
        self.ctx = ctx
        self.ledger = ledger
        self.stats = stats or ReconciliationService()
        self.returns: list[ReturnRecord] = []
        self.summary: ReturnsSummary = self.stats.summarize([])
        self.in_flight: set[str] = set()
        self.refresh_count = 0
        self._pending: deque[ReturnEvent] = deque()
        self._seen_events: set[str] = set()
        self._seen_order: deque[str] = deque()

    def refresh(self) -> None:
        rows = self.ledger.list_returns(self.ctx)
        self.returns = rows
        self.summary = self.stats.summarize(rows)
        self.refresh_count += 1

    def _run(self, name: str, command: Callable[[], T]) -> T:
        if name in self.in_flight:
            raise RuntimeError(f"'{name}' is already running.")
        self.in_flight.add(name)
        try:
            result = command()
        except Exception:
            log.exception("returns_command_failed command=%s store=%s", name, self.ctx.store_id)
            # a partial write may have landed before the failure
            self._refresh_after_failure(name)
            raise
        finally:
            self.in_flight.discard(name)
        self.refresh()
        return result

    def _refresh_after_failure(self, name: str) -> None:
        try:
            self.refresh()
        except Exception:
            log.exception("returns_refresh_failed command=%s store=%s", name, self.ctx.store_id)

    def create_returns(
        self,
        candidates: Iterable[UnitSaleRecord],
        details: ReturnDetails,
        quantities: Optional[dict[str, int]] = None,
    ) -> list[ReturnRecord]:
        candidates = list(candidates)
        return self._run("create", lambda: self.ledger.create(self.ctx, candidates, details, quantities))

    def update_return(self, return_id: int, **fields) -> ReturnRecord:
        return self._run(f"update:{return_id}", lambda: self.ledger.update(self.ctx, return_id, **fields))

    def delete_returns(self, return_ids: Iterable[int], confirmed: bool = False) -> int:
        ids = list(return_ids)
        if not confirmed:
            raise ValidationError("Deleting returns requires explicit confirmation.")
        return self._run("delete", lambda: self.ledger.delete(self.ctx, ids))

    # ---------- push channel ----------
    def notify(self, event: ReturnEvent) -> None:
        if event.store_id != self.ctx.store_id or event.event_id in self._seen_events:
            return
        self._remember(event.event_id)
        self._pending.append(event)

    def _remember(self, event_id: str) -> None:
        self._seen_events.add(event_id)
        self._seen_order.append(event_id)
        while len(self._seen_order) > SEEN_EVENTS_LIMIT:
            self._seen_events.discard(self._seen_order.popleft())

    def drain(self) -> bool:
        if not self._pending:
            return False
        count = len(self._pending)
        self._pending.clear()
        self.refresh()
        log.info("returns_events_drained events=%s store=%s", count, self.ctx.store_id)
        return True
