"""
Digital download fulfillment.

Issues time-limited download grants for:
1. Digital-only products (product_type = 'digital_download')
2. Physical prints (product_type = 'physical_print') - bundled digital copy
3. Legacy items without a product_type - assumed physical, so also bundled

Grants are persisted onto order_items; the storefront's download endpoint
resolves the token into a signed CDN URL and counts accesses.
"""
import logging
import secrets

from config import DOWNLOAD_PATH_PREFIX
from constants import (
    PRODUCT_TYPE_DIGITAL_DOWNLOAD,
    PRODUCT_TYPE_PHYSICAL_PRINT,
    FULFILLMENT_METHOD_DOWNLOAD,
    FULFILLMENT_STATUS_FULFILLED,
    FULFILLMENT_STATUS_PROCESSING,
    FULFILLMENT_STATUS_FAILED,
    DIGITAL_DELIVERY_SENT,
    DIGITAL_DELIVERY_EXPIRED,
    DOWNLOAD_EXPIRY_DAYS,
    DEFAULT_DIGITAL_FORMAT,
    DEFAULT_DIGITAL_RESOLUTION,
    DIGITAL_FULFILLMENT_ID_PREFIX,
    DIGITAL_FILE_SIZE_ESTIMATES,
    DEFAULT_DIGITAL_FILE_SIZE,
)
from services import notifications
from utils.logger import log_event
from utils.redaction import redact_download_url
from utils.timestamps import utc_now, days_from, parse_timestamp
from . import FulfillmentProvider
from .results import (
    DownloadGrant,
    FulfillmentError,
    FulfillmentErrorCode,
    FulfillmentResult,
    FulfillmentStatus,
)

logger = logging.getLogger(__name__)


def estimate_file_size(file_format):
    """Estimated size in bytes of a high-resolution master in the given format."""
    return DIGITAL_FILE_SIZE_ESTIMATES.get((file_format or "").lower(), DEFAULT_DIGITAL_FILE_SIZE)


def order_id_from_fulfillment_id(fulfillment_id):
    if fulfillment_id.startswith(DIGITAL_FULFILLMENT_ID_PREFIX):
        return fulfillment_id[len(DIGITAL_FULFILLMENT_ID_PREFIX):]
    return fulfillment_id


class DigitalDownloadProvider(FulfillmentProvider):
    name = "digital_download"
    fulfillment_method = FULFILLMENT_METHOD_DOWNLOAD

    def __init__(self, store, clock=utc_now, notifier=None):
        super().__init__(store)
        self.clock = clock
        self.notifier = notifier or notifications.send_download_ready_email

    def can_fulfill(self, item):
        product_type = item.product_type
        if product_type == PRODUCT_TYPE_DIGITAL_DOWNLOAD:
            return True
        if product_type == PRODUCT_TYPE_PHYSICAL_PRINT:
            return True
        # Legacy rows (no product_type) are prints, which bundle a digital copy
        return product_type is None

    def fulfill(self, order, items):
        logger.info(f"[Digital Download] Starting fulfillment for order {order.label}")

        try:
            digital_items = [item for item in items if self.can_fulfill(item)]

            if not digital_items:
                logger.info("[Digital Download] No digital items to fulfill")
                return FulfillmentResult(
                    success=True,
                    fulfillment_id=None,
                    tracking_info={"download_urls": [], "provider": self.name},
                    provider=self.name,
                )

            logger.info(f"[Digital Download] Processing {len(digital_items)} digital items")
            started_at = self.clock()

            # Build every grant before writing anything: one bad image fails the batch
            grants = []
            for item in digital_items:
                grants.extend(self._build_grants_for_item(order, item, started_at))

            self._persist_grants(grants, started_at)

            order_expires_at = days_from(self.clock(), DOWNLOAD_EXPIRY_DAYS)
            self.store.update_order(
                order.id,
                digital_delivery_status=DIGITAL_DELIVERY_SENT,
                download_expires_at=order_expires_at,
            )

            self.record_tracking(
                order.id,
                status=FULFILLMENT_STATUS_FULFILLED,
                status_message=f"Digital downloads available ({len(grants)} items)",
                tracking_data={
                    "fulfillment_id": self._fulfillment_id(order),
                    "download_count": len(grants),
                    "expires_at": order_expires_at.isoformat(),
                    "items": [
                        {
                            "order_item_id": g.order_item_id,
                            "format": g.format,
                            "file_size": g.file_size,
                        }
                        for g in grants
                    ],
                },
                started_at=started_at,
            )

            self._notify(order, grants)

            logger.info(f"[Digital Download] Fulfillment complete: {len(grants)} grants for order {order.label}")
            return FulfillmentResult(
                success=True,
                fulfillment_id=self._fulfillment_id(order),
                tracking_info={
                    "download_urls": grants,
                    "expires_at": order_expires_at,
                    "provider": self.name,
                },
                provider=self.name,
            )

        except FulfillmentError as e:
            logger.error(f"[Digital Download] Fulfillment failed for order {order.label}: {e.message}")
            return FulfillmentResult(
                success=False,
                error=e.message,
                error_details=e.to_details(),
                provider=self.name,
            )
        except Exception as e:
            logger.error(f"[Digital Download] Fulfillment failed for order {order.label}: {e}", exc_info=True)
            return FulfillmentResult.failed(str(e), provider=self.name, exception=type(e).__name__)

    def _fulfillment_id(self, order):
        return f"{DIGITAL_FULFILLMENT_ID_PREFIX}{order.id}"

    def _build_grants_for_item(self, order, item, generated_at):
        image_ids = item.target_image_ids
        if len(image_ids) > 1:
            logger.info(f"[Digital Download] Multi-image product {item.id}: {len(image_ids)} images")
        return [self._build_grant(order, item, image_id, generated_at) for image_id in image_ids]

    def _build_grant(self, order, item, image_id, generated_at):
        # Blank entries in a multi-image list fall back to the item's own image
        image_id = image_id or item.image_id
        if not image_id:
            raise FulfillmentError(
                FulfillmentErrorCode.INVALID_ITEM,
                f"No image_id for order item {item.id}",
                {"order_item_id": item.id},
            )

        image = self.store.get_image_asset(image_id)
        if not image or not image.get("storage_key"):
            raise FulfillmentError(
                FulfillmentErrorCode.FILE_NOT_FOUND,
                f"No stored asset for image {image_id} (order item {item.id})",
                {"order_item_id": item.id, "image_id": image_id},
            )

        product_data = item.product_data or {}
        file_format = product_data.get("digital_file_format") or DEFAULT_DIGITAL_FORMAT
        quality = product_data.get("digital_resolution") or DEFAULT_DIGITAL_RESOLUTION

        # The download endpoint only accepts tokens starting with "{order}_{item}_"
        token = f"{order.id}_{item.id}_{secrets.token_hex(8)}"
        download_url = f"{DOWNLOAD_PATH_PREFIX}/{order.id}/download/{item.id}?token={token}"

        grant = DownloadGrant(
            order_item_id=item.id,
            download_url=download_url,
            format=file_format,
            expires_at=days_from(generated_at, DOWNLOAD_EXPIRY_DAYS),
            file_size=estimate_file_size(file_format),
            file_name=f"{image.get('filename') or image_id}.{file_format}",
            quality=quality,
        )
        logger.info(f"[Digital Download] Grant for item {item.id}, image {image_id}: {redact_download_url(download_url)}")
        return grant

    def _persist_grants(self, grants, generated_at):
        """
        Write each grant onto its order item row.

        Keyed by order item, so a multi-image item keeps only its last grant.
        Writes are not batched in one transaction: if one fails, rows written
        before it keep their new links while the run reports failure.
        """
        for grant in grants:
            self.store.update_order_item(
                grant.order_item_id,
                is_digital=True,
                download_url=grant.download_url,
                download_url_generated_at=generated_at,
                download_expires_at=grant.expires_at,
                digital_file_format=grant.format,
                digital_file_size_bytes=grant.file_size,
                download_access_count=0,
            )

    def _notify(self, order, grants):
        try:
            _sent, error, outcome = self.notifier(order, grants)
        except Exception as e:
            log_event(
                logger,
                "fulfillment.download_email_failed",
                f"[Digital Download] Download email raised for order {order.label}: {e}",
                order_id=order.id,
                error=str(e),
            )
            return
        if outcome == "failed":
            log_event(
                logger,
                "fulfillment.download_email_failed",
                f"[Digital Download] Download email failed for order {order.label}: {error}",
                order_id=order.id,
                error=error,
            )

    def get_status(self, fulfillment_id):
        order_id = order_id_from_fulfillment_id(fulfillment_id)

        try:
            items = self.store.list_digital_items(order_id)
        except Exception as e:
            logger.error(f"[Digital Download] Failed to read digital items for order {order_id}: {e}")
            items = []

        if not items:
            return FulfillmentStatus(
                status=FULFILLMENT_STATUS_FAILED,
                status_message="No digital items found",
            )

        total_downloads = sum(item.get("download_access_count") or 0 for item in items)
        expiries = [parse_timestamp(item.get("download_expires_at")) for item in items]
        expiries = [e for e in expiries if e is not None]
        # Aggregate expiry: downloads are gone only when the last grant has lapsed
        expires_at = max(expiries) if expiries else None
        is_expired = bool(expires_at and expires_at <= self.clock())

        if is_expired:
            message = "Downloads expired"
        elif total_downloads > 0:
            message = f"Downloaded {total_downloads} time(s)"
        else:
            message = "Awaiting first download"

        return FulfillmentStatus(
            status=FULFILLMENT_STATUS_FULFILLED if total_downloads > 0 else FULFILLMENT_STATUS_PROCESSING,
            tracking_info={
                "provider": self.name,
                "download_count": total_downloads,
                "expires_at": expires_at,
                "is_expired": is_expired,
            },
            status_message=message,
        )

    def cancel(self, fulfillment_id):
        order_id = order_id_from_fulfillment_id(fulfillment_id)
        now = self.clock()

        logger.info(f"[Digital Download] Expiring downloads for order {order_id}")

        try:
            self.store.expire_digital_items(order_id, now)
        except Exception as e:
            logger.error(f"[Digital Download] Failed to expire downloads for order {order_id}: {e}")
            return False

        try:
            self.store.update_order(order_id, digital_delivery_status=DIGITAL_DELIVERY_EXPIRED)
        except Exception as e:
            log_event(
                logger,
                "fulfillment.order_write_failed",
                f"[Digital Download] Failed to mark order {order_id} downloads expired: {e}",
                order_id=order_id,
                column="digital_delivery_status",
                error=str(e),
            )

        logger.info(f"[Digital Download] Downloads expired for order {order_id}")
        return True
