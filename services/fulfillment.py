"""
Fulfillment Router

Routes a paid order's items to every provider that can deliver them:
1. Classify the order (physical / digital / hybrid)
2. Group items per provider (a print also goes to digital delivery)
3. Run each provider's batch in isolation
4. Reduce the per-provider results to fulfilled / partially_fulfilled / failed

Not idempotent: a second run re-submits prints and re-issues download grants.
Concurrent runs for the same order are rejected by order_lock.
"""
import logging

from constants import (
    PRODUCT_TYPE_DIGITAL_DOWNLOAD,
    FULFILLMENT_TYPE_PHYSICAL,
    FULFILLMENT_TYPE_DIGITAL,
    FULFILLMENT_TYPE_HYBRID,
    FULFILLMENT_STATUS_FULFILLED,
    FULFILLMENT_STATUS_PARTIALLY_FULFILLED,
    FULFILLMENT_STATUS_FAILED,
)
from services.fulfillment_providers.results import FulfillmentErrorCode, FulfillmentResult
from utils.logger import log_event

logger = logging.getLogger(__name__)

ROUTER_NAME = "fulfillment_router"


def reduce_fulfillment_status(results):
    """
    Overall order status from per-provider results.
    An empty result list (order with no items) counts as fulfilled.
    """
    if all(r.success for r in results):
        return FULFILLMENT_STATUS_FULFILLED
    if any(r.success for r in results):
        return FULFILLMENT_STATUS_PARTIALLY_FULFILLED
    return FULFILLMENT_STATUS_FAILED


class FulfillmentRouter:
    def __init__(self, store, providers):
        self.store = store
        # Registration order is execution order
        self.providers = list(providers)

    def provider_for_method(self, fulfillment_method):
        for provider in self.providers:
            if provider.fulfillment_method == fulfillment_method:
                return provider
        return None

    def classify_fulfillment_type(self, items):
        # Legacy items without a product_type are physical prints
        has_physical = any(item.is_physical_type for item in items)
        has_digital = any(item.product_type == PRODUCT_TYPE_DIGITAL_DOWNLOAD for item in items)

        # A print's bundled digital copy does not make the order hybrid
        if has_physical and has_digital:
            return FULFILLMENT_TYPE_HYBRID
        if has_digital:
            return FULFILLMENT_TYPE_DIGITAL
        return FULFILLMENT_TYPE_PHYSICAL

    def group_items(self, items):
        """
        Returns:
            tuple: (groups, unclaimed) where groups is a list of (provider, items)
                   in registration order and unclaimed lists items no provider claims.
        """
        groups = []
        claimed_ids = set()
        for provider in self.providers:
            claimed = [item for item in items if provider.can_fulfill(item)]
            if claimed:
                groups.append((provider, claimed))
                claimed_ids.update(id(item) for item in claimed)

        unclaimed = [item for item in items if id(item) not in claimed_ids]
        return groups, unclaimed

    def execute_groups(self, order, groups):
        results = []
        for provider, items in groups:
            name = getattr(provider, "name", type(provider).__name__)

            if not any(p is provider for p in self.providers):
                logger.error(f"[Fulfillment] No registered provider instance for {name}")
                results.append(FulfillmentResult.failed(
                    f"No fulfillment provider registered for {name}",
                    provider=name,
                ))
                continue

            logger.info(f"[Fulfillment] Processing {len(items)} items with {name}")
            try:
                result = provider.fulfill(order, items)
            except Exception as e:
                logger.error(f"[Fulfillment] Unexpected error in {name}: {e}", exc_info=True)
                result = FulfillmentResult.failed(str(e), provider=name, exception=type(e).__name__)

            if not result.success:
                logger.error(f"[Fulfillment] {name} failed for order {order.label}: {result.error}")
            results.append(result)
        return results

    def fulfill_order(self, order, items):
        """
        Fulfill every item of a paid order.

        Returns:
            list[FulfillmentResult]: one per provider group, plus one failed
            INVALID_ITEM result when some items are claimed by no provider.
        """
        logger.info(f"[Fulfillment] Processing order {order.label} ({len(items)} items)")

        try:
            with self.store.order_lock(order.id) as acquired:
                if not acquired:
                    logger.warning(f"[Fulfillment] Order {order.label} is already being fulfilled")
                    return [FulfillmentResult.failed(
                        f"Fulfillment already in progress for order {order.label}",
                        provider=ROUTER_NAME,
                        reason="locked",
                    )]
                return self._fulfill_locked(order, items)

        except Exception as e:
            logger.error(f"[Fulfillment] Router failed for order {order.label}: {e}", exc_info=True)
            return [FulfillmentResult.failed(
                f"Fulfillment router failed: {e}",
                provider=ROUTER_NAME,
                exception=type(e).__name__,
            )]

    def _fulfill_locked(self, order, items):
        fulfillment_type = self.classify_fulfillment_type(items)
        logger.info(f"[Fulfillment] Order {order.label} fulfillment type: {fulfillment_type}")
        self._update_order_best_effort(order.id, fulfillment_type=fulfillment_type)

        groups, unclaimed = self.group_items(items)
        logger.info(f"[Fulfillment] Providers needed: {[p.name for p, _ in groups]}")

        results = self.execute_groups(order, groups)

        if unclaimed:
            item_ids = [item.id for item in unclaimed]
            logger.error(f"[Fulfillment] Order {order.label} has items no provider can fulfill: {item_ids}")
            results.append(FulfillmentResult.failed(
                f"No fulfillment provider can fulfill items {item_ids}",
                code=FulfillmentErrorCode.INVALID_ITEM,
                provider=ROUTER_NAME,
                order_item_ids=item_ids,
            ))

        status = reduce_fulfillment_status(results)
        self._update_order_best_effort(order.id, fulfillment_status=status)

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"[Fulfillment] Order {order.label} -> {status} ({succeeded}/{len(results)} succeeded)")
        return results

    def _update_order_best_effort(self, order_id, **fields):
        try:
            self.store.update_order(order_id, **fields)
        except Exception as e:
            log_event(
                logger,
                "fulfillment.order_write_failed",
                f"[Fulfillment] Failed to update order {order_id} {sorted(fields)}: {e}",
                order_id=order_id,
                columns=sorted(fields),
                error=str(e),
            )

    def get_order_fulfillment_status(self, order_id):
        """
        Current status per fulfillment method, re-derived by the provider that
        owns each tracked fulfillment. The latest tracking row per method wins.

        Returns:
            dict: {fulfillment_method: FulfillmentStatus}
        """
        latest = {}
        for record in self.store.list_tracking_records(order_id):
            tracking_data = record.get("tracking_data") or {}
            fulfillment_id = tracking_data.get("fulfillment_id")
            if fulfillment_id:
                latest[record["fulfillment_method"]] = fulfillment_id

        statuses = {}
        for method, fulfillment_id in latest.items():
            provider = self.provider_for_method(method)
            if provider is None:
                logger.warning(f"[Fulfillment] No provider for tracked method {method} on order {order_id}")
                continue
            statuses[method] = provider.get_status(fulfillment_id)
        return statuses


def build_default_router(store=None):
    from database import get_db
    from services.fulfillment_store import PostgresFulfillmentStore
    from services.fulfillment_providers.digital import DigitalDownloadProvider
    from services.fulfillment_providers.gelato import GelatoPrintProvider

    store = store or PostgresFulfillmentStore(get_db())
    return FulfillmentRouter(store, [
        DigitalDownloadProvider(store),
        GelatoPrintProvider(store),
    ])


def fulfill_order_by_id(order_id, router=None):
    """
    Load an order and its items and run the router.

    Returns:
        tuple: (order, results, fulfillment_status), or None if the order does not exist.
    """
    router = router or build_default_router()

    order = router.store.get_order(order_id)
    if not order:
        logger.error(f"[Fulfillment] Order {order_id} not found")
        return None

    items = router.store.list_order_items(order.id)
    results = router.fulfill_order(order, items)
    return order, results, reduce_fulfillment_status(results)
