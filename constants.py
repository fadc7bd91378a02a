# Product types (order_items.product_data.product_type)
PRODUCT_TYPE_PHYSICAL_PRINT = "physical_print"
PRODUCT_TYPE_DIGITAL_DOWNLOAD = "digital_download"

# Orders.fulfillment_type
FULFILLMENT_TYPE_PHYSICAL = "physical"
FULFILLMENT_TYPE_DIGITAL = "digital"
FULFILLMENT_TYPE_HYBRID = "hybrid"  # Reserved for purchased digital add-ons next to prints

# Orders.fulfillment_status
FULFILLMENT_STATUS_PENDING = "pending"
FULFILLMENT_STATUS_PROCESSING = "processing"
FULFILLMENT_STATUS_FULFILLED = "fulfilled"
FULFILLMENT_STATUS_PARTIALLY_FULFILLED = "partially_fulfilled"
FULFILLMENT_STATUS_FAILED = "failed"

# Orders.digital_delivery_status
DIGITAL_DELIVERY_PENDING = "pending"
DIGITAL_DELIVERY_SENT = "sent"
DIGITAL_DELIVERY_EXPIRED = "expired"

# order_fulfillment_tracking.fulfillment_method
FULFILLMENT_METHOD_DOWNLOAD = "download"
FULFILLMENT_METHOD_GELATO = "gelato"

# Download grant policy (fixed, not configurable per call)
DOWNLOAD_EXPIRY_DAYS = 7
DEFAULT_DIGITAL_FORMAT = "jpg"
DEFAULT_DIGITAL_RESOLUTION = "original"
DIGITAL_FULFILLMENT_ID_PREFIX = "digital_"

# Rough sizes for high-resolution masters; the real size is only known when
# the CDN renders the asset.
DIGITAL_FILE_SIZE_ESTIMATES = {
    "jpg": 5 * 1024 * 1024,
    "png": 10 * 1024 * 1024,
    "pdf": 3 * 1024 * 1024,
}
DEFAULT_DIGITAL_FILE_SIZE = 5 * 1024 * 1024

# Gelato order status -> fulfillment status
GELATO_STATUS_MAP = {
    "draft": FULFILLMENT_STATUS_PENDING,
    "pending": FULFILLMENT_STATUS_PENDING,
    "in-production": FULFILLMENT_STATUS_PROCESSING,
    "shipped": FULFILLMENT_STATUS_PROCESSING,
    "delivered": FULFILLMENT_STATUS_FULFILLED,
    "failed": FULFILLMENT_STATUS_FAILED,
    "cancelled": FULFILLMENT_STATUS_FAILED,
}
