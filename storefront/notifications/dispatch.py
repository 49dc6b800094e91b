# storefront/notifications/dispatch.py
"""
Fire-and-forget notification dispatch.

Delivery is at-most-once and best-effort: a job runs once on the pool, and
if it raises, the failure is logged and counted and then dropped. Nothing
is retried and nothing propagates back to the request that enqueued it.
Jobs are not persisted; a process exit loses whatever is still queued.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from sqlalchemy.orm import sessionmaker

from storefront.app_server.metrics import NOTIFICATIONS
from storefront.db.session import transaction
from storefront.notifications.email import EmailClient, render_order_confirmation, render_shipping_confirmation
from storefront.orders import events

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, workers: int = 2) -> None:
        # workers == 0 runs jobs inline on the caller's thread (tests)
        self._pool: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") if workers > 0 else None
        )

    def enqueue(self, kind: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        if self._pool is None:
            self._run(kind, fn, args, kwargs)
            return
        try:
            self._pool.submit(self._run, kind, fn, args, kwargs)
        except RuntimeError as e:
            # pool already shut down
            NOTIFICATIONS.labels(kind=kind, outcome="dropped").inc()
            logger.warning("notification %s dropped: %s", kind, e, extra={"context": f"notify.{kind}"})

    def _run(self, kind: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            result = fn(*args, **kwargs)
        except Exception:
            NOTIFICATIONS.labels(kind=kind, outcome="failed").inc()
            logger.exception("notification %s failed", kind, extra={"context": f"notify.{kind}"})
            return
        NOTIFICATIONS.labels(kind=kind, outcome="sent" if result is not False else "skipped").inc()

    def shutdown(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)


class OrderNotifier:
    """Builds the customer e-mails for an order snapshot and logs `email_sent` on success."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        email: EmailClient,
        session_factory: sessionmaker,
        *,
        public_url: str = "",
    ) -> None:
        self.dispatcher = dispatcher
        self.email = email
        self.session_factory = session_factory
        self.public_url = public_url.rstrip("/")

    def _mark_sent(self, order_id: int, kind: str) -> None:
        db = self.session_factory()
        try:
            with transaction(db):
                events.record_event(db, order_id, events.EMAIL_SENT, {"kind": kind})
        finally:
            db.close()

    def _send_order_confirmation(self, order: dict, token: Optional[str]) -> bool:
        link = None
        if token and self.public_url:
            link = f"{self.public_url}/order/{order['orderNumber']}?token={token}"
        subject, body = render_order_confirmation(order, link)
        if not self.email.send(order["email"], subject, body):
            return False
        self._mark_sent(order["id"], "order_confirmation")
        return True

    def _send_shipping_confirmation(self, order: dict) -> bool:
        subject, body = render_shipping_confirmation(order)
        if not self.email.send(order["email"], subject, body):
            return False
        self._mark_sent(order["id"], "shipping_confirmation")
        return True

    def order_confirmed(self, order: dict, token: Optional[str] = None) -> None:
        self.dispatcher.enqueue("order_confirmation", self._send_order_confirmation, order, token)

    def order_shipped(self, order: dict) -> None:
        self.dispatcher.enqueue("shipping_confirmation", self._send_shipping_confirmation, order)
