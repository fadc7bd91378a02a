import logging
from abc import ABC, abstractmethod
from typing import List

from models import Order, OrderItem
from utils.logger import log_event
from utils.timestamps import utc_now
from .results import FulfillmentResult, FulfillmentStatus

logger = logging.getLogger(__name__)


class FulfillmentProvider(ABC):
    """
    Abstract base class for fulfillment providers.

    A provider declares which order items it can deliver (can_fulfill) and
    delivers a batch of them (fulfill). The router fans an order's items out
    to every provider that claims them, so one item can be handled by more
    than one provider (a print plus its bundled digital copy).
    """

    # Shown in logs and attached to results
    name = "provider"
    # Value written to order_fulfillment_tracking.fulfillment_method
    fulfillment_method = None

    def __init__(self, store):
        self.store = store

    @abstractmethod
    def can_fulfill(self, item: OrderItem) -> bool:
        """
        Whether this provider delivers the given item.
        Must be a pure predicate: the router calls it for every item/provider pair.
        """
        pass

    @abstractmethod
    def fulfill(self, order: Order, items: List[OrderItem]) -> FulfillmentResult:
        """
        Deliver the items this provider claimed.

        Args:
            order (Order): The paid order.
            items (list[OrderItem]): Only the items routed to this provider.

        Returns:
            FulfillmentResult: One aggregate result for the whole batch.
            Implementations convert their own exceptions into a failed result.
        """
        pass

    @abstractmethod
    def get_status(self, fulfillment_id: str) -> FulfillmentStatus:
        """
        Re-derive the current state of a fulfillment from persisted records.
        Read-only; safe to call repeatedly.
        """
        pass

    @abstractmethod
    def cancel(self, fulfillment_id: str) -> bool:
        """
        Best-effort cancellation. Returns False instead of raising when the
        backend cannot cancel.
        """
        pass

    def record_tracking(self, order_id, status, status_message, tracking_data, started_at=None):
        """
        Append an order_fulfillment_tracking row.

        Tracking rows are audit telemetry: the authoritative state already
        lives on orders/order_items, so a failed write is reported as a
        structured event and otherwise ignored.
        """
        completed_at = utc_now()
        try:
            self.store.insert_tracking_record(
                order_id=order_id,
                fulfillment_method=self.fulfillment_method,
                status=status,
                status_message=status_message,
                tracking_data=tracking_data,
                started_at=started_at or completed_at,
                completed_at=completed_at,
            )
            return True
        except Exception as e:
            log_event(
                logger,
                "fulfillment.tracking_write_failed",
                f"[{self.name}] Failed to write tracking record for order {order_id}: {e}",
                order_id=order_id,
                fulfillment_method=self.fulfillment_method,
                error=str(e),
            )
            return False
