"""Shared, polled cache of the dashboard's aggregate metrics."""
from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from typing import Any

from ..models import DashboardKPI, DefectDistribution, ProductionOrder
from ..services.api_client import ApiClient, ApiRequestError
from ..timers import RepeatingTimer

__all__ = ["DashboardStore", "DashboardFeed", "DEFAULT_ERROR"]

logger = logging.getLogger(__name__)

DEFAULT_ERROR = "Error loading dashboard data"

Subscriber = Callable[[], None]


class DashboardStore:
    """One cache instance shared by every dashboard consumer of an app.

    Consumers register with :meth:`subscribe` and are called once each time
    a :meth:`refetch` completes, whether it succeeded or failed. While at
    least one consumer is subscribed a background timer refetches every
    ``refresh_interval`` seconds.

    Refetches are not de-duplicated: concurrent calls all run, and the
    fields end up holding whatever the last call to finish wrote.
    """

    def __init__(self, api: ApiClient, *, refresh_interval: float = 300):
        self.api = api
        self.refresh_interval = refresh_interval

        self.kpi_data: DashboardKPI | None = None
        self.defect_distribution: list[DefectDistribution] = []
        self.active_production_orders: list[ProductionOrder] = []
        self.loading = True
        self.error: str | None = None

        self._subscribers: list[Subscriber] = []
        self._subscribers_lock = threading.Lock()
        self._timer: RepeatingTimer | None = None

    # -- fetching ----------------------------------------------------------

    def refetch(self) -> None:
        """Reload KPIs, the defect pareto and in-progress orders."""

        self.loading = True
        self.error = None
        try:
            dashboard = self.api.get_dashboard()
            if dashboard is not None:
                self.kpi_data = DashboardKPI.from_backend(dashboard)

            pareto = self.api.get_pareto()
            if pareto is not None:
                self.defect_distribution = [
                    DefectDistribution.model_validate(row) for row in pareto
                ]

            orders = self.api.list_active_orders()
            if orders is not None:
                self.active_production_orders = [
                    ProductionOrder.model_validate(row) for row in orders
                ]
        except ApiRequestError as exc:
            self.error = exc.message or DEFAULT_ERROR
            logger.error("Dashboard refetch failed: %s", self.error)
        except (TypeError, ValueError) as exc:
            self.error = DEFAULT_ERROR
            logger.error("Dashboard payload could not be parsed: %s", exc)
        finally:
            self.loading = False
            self._notify()

    def refetch_in_background(self) -> threading.Thread:
        """Run :meth:`refetch` on a daemon thread and return the thread."""

        thread = threading.Thread(target=self.refetch, name="dashboard-refetch", daemon=True)
        thread.start()
        return thread

    def snapshot(self) -> dict[str, Any]:
        """Return the cached fields as JSON-serialisable data."""

        return {
            "kpi_data": self.kpi_data.model_dump() if self.kpi_data else None,
            "defect_distribution": [row.model_dump() for row in self.defect_distribution],
            "active_production_orders": [
                order.model_dump() for order in self.active_production_orders
            ],
            "loading": self.loading,
            "error": self.error,
        }

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._subscribers_lock:
            self._subscribers.append(callback)
            if len(self._subscribers) == 1:
                self._start_timer()
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        """Unregister ``callback``; the last one out stops the refresh timer."""

        with self._subscribers_lock:
            if callback not in self._subscribers:
                return
            self._subscribers.remove(callback)
            if not self._subscribers:
                self._stop_timer()

    @property
    def subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)

    def _notify(self) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("Dashboard subscriber %r failed", callback)

    def _start_timer(self) -> None:
        # Callers hold _subscribers_lock.
        self._stop_timer()
        self._timer = RepeatingTimer(
            self.refresh_interval,
            self.refetch,
            name="dashboard-refresh",
            run_immediately=self.kpi_data is None and self.loading,
        )
        self._timer.start()
        logger.debug("Dashboard refresh timer started (%ss)", self.refresh_interval)

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("Dashboard refresh timer stopped")


class DashboardFeed:
    """Iterate over dashboard snapshots, one per completed refetch.

    The feed is itself a subscriber, so holding one open keeps the refresh
    timer running. Use it as a context manager to guarantee unsubscription.
    """

    def __init__(self, store: DashboardStore, *, timeout: float | None = None):
        self.store = store
        self.timeout = timeout
        self._events: queue.Queue[dict[str, Any]] = queue.Queue()
        self._unsubscribe: Callable[[], None] | None = None

    def _on_change(self) -> None:
        self._events.put(self.store.snapshot())

    def open(self) -> "DashboardFeed":
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)
        return self

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self) -> "DashboardFeed":
        return self.open()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        while True:
            try:
                yield self._events.get(timeout=self.timeout)
            except queue.Empty:
                return
