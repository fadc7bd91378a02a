import logging

import requests

from config import PRINT_FILE_URL_TTL_SECONDS
from constants import (
    PRODUCT_TYPE_PHYSICAL_PRINT,
    FULFILLMENT_METHOD_GELATO,
    FULFILLMENT_STATUS_PROCESSING,
    FULFILLMENT_STATUS_FAILED,
    GELATO_STATUS_MAP,
)
from services.gelato_client import GelatoClient, GelatoApiError
from utils.storage import get_storage
from utils.timestamps import utc_now
from . import FulfillmentProvider
from .results import FulfillmentError, FulfillmentErrorCode, FulfillmentResult, FulfillmentStatus

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("firstName", "addressLine1", "city", "postCode", "country")


def classify_print_error(exc):
    """Map a provider failure onto the fulfillment error taxonomy."""
    if isinstance(exc, FulfillmentError):
        return exc.code
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return FulfillmentErrorCode.NETWORK_ERROR

    message = str(exc).lower()
    if "address" in message:
        return FulfillmentErrorCode.INVALID_ADDRESS
    if "inventory" in message or "stock" in message:
        return FulfillmentErrorCode.INSUFFICIENT_INVENTORY
    if isinstance(exc, GelatoApiError) and exc.status_code == 402:
        return FulfillmentErrorCode.PAYMENT_REQUIRED
    if isinstance(exc, (GelatoApiError, requests.RequestException)) or "api" in message:
        return FulfillmentErrorCode.API_ERROR
    return FulfillmentErrorCode.UNKNOWN


class GelatoPrintProvider(FulfillmentProvider):
    """
    Gelato print-on-demand integration.
    Requires GELATO_API_KEY in env.
    """
    name = "gelato_print"
    fulfillment_method = FULFILLMENT_METHOD_GELATO

    def __init__(self, store, client=None, storage=None):
        super().__init__(store)
        self.client = client or GelatoClient()
        self._storage = storage

    @property
    def storage(self):
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    def can_fulfill(self, item):
        product_data = item.product_data or {}
        # Legacy rows default to physical + Gelato
        is_physical_print = item.product_type in (PRODUCT_TYPE_PHYSICAL_PRINT, None)
        uses_gelato = product_data.get("fulfillment_method") in (FULFILLMENT_METHOD_GELATO, None)
        return is_physical_print and uses_gelato

    def fulfill(self, order, items):
        logger.info(f"[Gelato] Starting fulfillment for order {order.label}")
        started_at = utc_now()

        try:
            print_items = [item for item in items if self.can_fulfill(item)]

            if not print_items:
                logger.info("[Gelato] No Gelato items to fulfill")
                return FulfillmentResult(success=True, fulfillment_id=None, provider=self.name)

            payload = self._build_order_payload(order, print_items)
            gelato_order_id = self.client.create_order(payload)

            if not gelato_order_id:
                raise FulfillmentError(
                    FulfillmentErrorCode.API_ERROR,
                    "Gelato order creation failed - no order ID returned",
                )

            self.record_tracking(
                order.id,
                status=FULFILLMENT_STATUS_PROCESSING,
                status_message=f"Submitted {len(print_items)} items to Gelato",
                tracking_data={
                    "fulfillment_id": gelato_order_id,
                    "provider_order_id": gelato_order_id,
                    "item_ids": [item.id for item in print_items],
                },
                started_at=started_at,
            )

            logger.info(f"[Gelato] Order {order.label} -> Gelato order {gelato_order_id}")
            return FulfillmentResult(
                success=True,
                fulfillment_id=gelato_order_id,
                tracking_info={
                    "provider": "gelato",
                    "provider_order_id": gelato_order_id,
                },
                provider=self.name,
            )

        except Exception as e:
            code = classify_print_error(e)
            logger.error(f"[Gelato] Fulfillment failed for order {order.label} ({code.value}): {e}")
            details = e.details if isinstance(e, FulfillmentError) else {}
            return FulfillmentResult.failed(str(e), code=code, provider=self.name, **details)

    def _build_order_payload(self, order, items):
        return {
            "orderType": "order",
            "orderReferenceId": str(order.order_number or order.id),
            "customerReferenceId": order.customer_email or str(order.id),
            "items": [self._build_item(item) for item in items],
            "shippingAddress": self._build_shipping_address(order),
        }

    def _build_item(self, item):
        product_data = item.product_data or {}
        product_uid = product_data.get("gelato_product_uid")
        if not product_uid:
            raise FulfillmentError(
                FulfillmentErrorCode.INVALID_ITEM,
                f"Order item {item.id} has no gelato_product_uid",
                {"order_item_id": item.id},
            )

        # Multi-image prints are composited upstream into print_storage_key
        storage_key = product_data.get("print_storage_key")
        if not storage_key:
            image_id = item.target_image_ids[0]
            image = self.store.get_image_asset(image_id) if image_id else None
            storage_key = image.get("storage_key") if image else None
        if not storage_key:
            raise FulfillmentError(
                FulfillmentErrorCode.FILE_NOT_FOUND,
                f"No print file for order item {item.id}",
                {"order_item_id": item.id},
            )

        file_url = self.storage.get_url(storage_key, expires_seconds=PRINT_FILE_URL_TTL_SECONDS)
        if not file_url:
            raise FulfillmentError(
                FulfillmentErrorCode.FILE_NOT_FOUND,
                f"Could not resolve print file URL for order item {item.id}",
                {"order_item_id": item.id},
            )

        return {
            "itemReferenceId": str(item.id),
            "productUid": product_uid,
            "quantity": int(item.quantity or 1),
            "files": [{"type": "default", "url": file_url}],
        }

    def _build_shipping_address(self, order):
        # Checkout stores the Stripe shape: {'name': ..., 'address': {'line1': ...}}
        shipping = order.shipping_address or {}
        addr = shipping.get("address") or {}
        name = (shipping.get("name") or "").strip()
        first_name, _, last_name = name.partition(" ")

        address = {
            "firstName": first_name,
            "lastName": last_name,
            "addressLine1": addr.get("line1"),
            "addressLine2": addr.get("line2") or "",
            "city": addr.get("city"),
            "postCode": addr.get("postal_code"),
            "state": addr.get("state") or "",
            "country": addr.get("country"),
            "email": order.customer_email,
        }

        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not address.get(f)]
        if missing:
            raise FulfillmentError(
                FulfillmentErrorCode.INVALID_ADDRESS,
                f"Shipping address incomplete for order {order.label}: missing {', '.join(missing)}",
                {"missing_fields": missing},
            )
        return address

    def get_status(self, fulfillment_id):
        try:
            data = self.client.get_order(fulfillment_id)
        except (GelatoApiError, requests.RequestException) as e:
            logger.error(f"[Gelato] Failed to get status for {fulfillment_id}: {e}")
            return FulfillmentStatus(
                status=FULFILLMENT_STATUS_FAILED,
                status_message=f"Failed to get Gelato status: {e}",
            )

        if not data:
            return FulfillmentStatus(status=FULFILLMENT_STATUS_FAILED, status_message="Gelato order not found")

        provider_status = data.get("fulfillmentStatus") or data.get("orderStatus")
        package = ((data.get("shipment") or {}).get("packages") or [{}])[0]

        return FulfillmentStatus(
            status=GELATO_STATUS_MAP.get(provider_status, FULFILLMENT_STATUS_PROCESSING),
            tracking_info={
                "provider": "gelato",
                "provider_order_id": fulfillment_id,
                "tracking_number": package.get("trackingCode"),
                "tracking_url": package.get("trackingUrl"),
                "carrier": (data.get("shipment") or {}).get("shipmentMethodName"),
            },
            status_message=provider_status,
        )

    def cancel(self, fulfillment_id):
        logger.info(f"[Gelato] Canceling Gelato order {fulfillment_id}")
        try:
            return bool(self.client.cancel_order(fulfillment_id))
        except (GelatoApiError, requests.RequestException) as e:
            # Orders already in production cannot be cancelled
            logger.warning(f"[Gelato] Cancellation failed for {fulfillment_id}: {e}")
            return False
