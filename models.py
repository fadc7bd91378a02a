import json

from constants import PRODUCT_TYPE_DIGITAL_DOWNLOAD, PRODUCT_TYPE_PHYSICAL_PRINT


def _as_json(value, default):
    """JSONB columns arrive as dicts/lists from psycopg2, but legacy rows stored text."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


class Order:
    ALLOWED_COLUMNS = (
        'id', 'order_number', 'customer_email', 'status', 'shipping_address',
        'fulfillment_type', 'fulfillment_status', 'digital_delivery_status',
        'download_expires_at', 'created_at', 'updated_at',
    )

    def __init__(self, **kwargs):
        for column in self.ALLOWED_COLUMNS:
            setattr(self, column, None)
        for k, v in kwargs.items():
            if k in self.ALLOWED_COLUMNS:
                setattr(self, k, v)
        self.shipping_address = _as_json(self.shipping_address, {})

    @classmethod
    def from_row(cls, row):
        if not row:
            return None
        return cls(**dict(row))

    @property
    def label(self):
        """Human-friendly identifier for logs."""
        return self.order_number or self.id

    def __repr__(self):
        return f"<Order {self.label} fulfillment_status={self.fulfillment_status}>"


class OrderItem:
    ALLOWED_COLUMNS = (
        'id', 'order_id', 'product_data', 'image_id', 'image_ids', 'quantity',
        'is_digital', 'download_url', 'download_url_generated_at',
        'download_expires_at', 'digital_file_format', 'digital_file_size_bytes',
        'download_access_count', 'created_at',
    )

    def __init__(self, **kwargs):
        for column in self.ALLOWED_COLUMNS:
            setattr(self, column, None)
        for k, v in kwargs.items():
            if k in self.ALLOWED_COLUMNS:
                setattr(self, k, v)
        self.product_data = _as_json(self.product_data, {})
        self.image_ids = _as_json(self.image_ids, None)
        if self.quantity is None:
            self.quantity = 1

    @classmethod
    def from_row(cls, row):
        if not row:
            return None
        return cls(**dict(row))

    @property
    def product_type(self):
        """None means a legacy row written before product types existed (physical)."""
        return (self.product_data or {}).get('product_type') or None

    @property
    def is_physical_type(self):
        return self.product_type in (PRODUCT_TYPE_PHYSICAL_PRINT, None)

    @property
    def is_digital_type(self):
        return self.product_type == PRODUCT_TYPE_DIGITAL_DOWNLOAD

    @property
    def target_image_ids(self):
        """
        Images this line item delivers, in order.

        Multi-image products carry a non-empty `image_ids` list; everything
        else delivers its single `image_id`.
        """
        if isinstance(self.image_ids, list) and len(self.image_ids) > 0:
            return list(self.image_ids)
        return [self.image_id]

    def __repr__(self):
        return f"<OrderItem {self.id} order={self.order_id} type={self.product_type}>"
