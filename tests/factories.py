"""
Test entity factories for fulfillment.

Builds Order / OrderItem models with sensible defaults and provides an
in-memory FulfillmentStore that records every write, so tests can assert on
exactly what a run persisted.
"""
from contextlib import contextmanager
import uuid

from models import Order, OrderItem
from services.fulfillment_store import (
    FulfillmentStore,
    ORDER_WRITABLE_COLUMNS,
    ORDER_ITEM_WRITABLE_COLUMNS,
    _check_columns,
)


DEFAULT_SHIPPING = {
    'name': 'Ada Lovelace',
    'address': {
        'line1': '12 Kennel Lane',
        'line2': None,
        'city': 'London',
        'state': '',
        'postal_code': 'N1 9GU',
        'country': 'GB',
    },
}


class OrderFactory:
    """Factory for building test orders."""

    @classmethod
    def build(cls, **kwargs):
        suffix = uuid.uuid4().hex[:8]
        defaults = {
            'id': f'ord_{suffix}',
            'order_number': f'PP-{suffix.upper()}',
            'customer_email': f'owner-{suffix}@example.com',
            'status': 'paid',
            'shipping_address': DEFAULT_SHIPPING,
            'fulfillment_status': 'pending',
        }
        defaults.update(kwargs)
        return Order(**defaults)


class OrderItemFactory:
    """
    Factory for building test order items.

    product_type=None builds a legacy row (no product_type key at all).
    """

    @classmethod
    def build(cls, order, product_type='physical_print', product_data=None, **kwargs):
        data = {}
        if product_type is not None:
            data['product_type'] = product_type
        if product_type in ('physical_print', None):
            data['gelato_product_uid'] = 'canvas_300x400-mm_wood-fsc-slim'
        data.update(product_data or {})

        defaults = {
            'id': f'item_{uuid.uuid4().hex[:8]}',
            'order_id': order.id,
            'product_data': data,
            'image_id': f'img_{uuid.uuid4().hex[:8]}',
            'quantity': 1,
            'is_digital': False,
            'download_access_count': 0,
        }
        defaults.update(kwargs)
        return OrderItem(**defaults)

    @classmethod
    def physical(cls, order, **kwargs):
        return cls.build(order, product_type='physical_print', **kwargs)

    @classmethod
    def digital(cls, order, **kwargs):
        return cls.build(order, product_type='digital_download', **kwargs)

    @classmethod
    def legacy(cls, order, **kwargs):
        return cls.build(order, product_type=None, **kwargs)


class InMemoryFulfillmentStore(FulfillmentStore):
    """
    Dict-backed FulfillmentStore.

    fail_on: names of store methods that should raise, to simulate a failing
    database write.
    """

    def __init__(self):
        self.orders = {}
        self.items = {}
        self.images = {}
        self.tracking = []
        self.order_writes = []
        self.item_writes = []
        self.locked_orders = set()
        self.fail_on = set()

    # --- seeding -------------------------------------------------------

    def add_order(self, order, items=(), with_images=True):
        self.orders[order.id] = order
        for item in items:
            self.items[item.id] = item
            if with_images:
                for image_id in item.target_image_ids:
                    if image_id:
                        self.add_image(image_id)
        return order

    def add_image(self, image_id, storage_key=None, filename=None):
        self.images[image_id] = {
            'id': image_id,
            'storage_key': storage_key if storage_key is not None else f'portraits/{image_id}.png',
            'filename': filename or f'portrait-{image_id}',
        }

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise RuntimeError(f"simulated {name} failure")

    # --- FulfillmentStore ---------------------------------------------

    def get_order(self, order_id):
        self._maybe_fail('get_order')
        return self.orders.get(order_id)

    def list_order_items(self, order_id):
        return [i for i in self.items.values() if i.order_id == order_id]

    def get_image_asset(self, image_id):
        self._maybe_fail('get_image_asset')
        image = self.images.get(image_id)
        return dict(image) if image else None

    def update_order(self, order_id, **fields):
        _check_columns(fields, ORDER_WRITABLE_COLUMNS, 'orders')
        self._maybe_fail('update_order')
        self.order_writes.append((order_id, dict(fields)))
        order = self.orders.get(order_id)
        if order is None:
            return 0
        for column, value in fields.items():
            setattr(order, column, value)
        return 1

    def update_order_item(self, item_id, **fields):
        _check_columns(fields, ORDER_ITEM_WRITABLE_COLUMNS, 'order_items')
        self._maybe_fail('update_order_item')
        item = self.items.get(item_id)
        if item is None:
            raise LookupError(f"order_item {item_id} not found")
        self.item_writes.append((item_id, dict(fields)))
        for column, value in fields.items():
            setattr(item, column, value)
        return 1

    def list_digital_items(self, order_id):
        self._maybe_fail('list_digital_items')
        return [
            {
                'id': i.id,
                'download_access_count': i.download_access_count,
                'download_expires_at': i.download_expires_at,
            }
            for i in self.list_order_items(order_id)
            if i.is_digital
        ]

    def expire_digital_items(self, order_id, expires_at):
        self._maybe_fail('expire_digital_items')
        count = 0
        for item in self.list_order_items(order_id):
            if item.is_digital:
                item.download_expires_at = expires_at
                count += 1
        return count

    def insert_tracking_record(self, order_id, fulfillment_method, status, status_message,
                               tracking_data, started_at, completed_at):
        self._maybe_fail('insert_tracking_record')
        self.tracking.append({
            'id': len(self.tracking) + 1,
            'order_id': order_id,
            'fulfillment_method': fulfillment_method,
            'status': status,
            'status_message': status_message,
            'tracking_data': tracking_data,
            'started_at': started_at,
            'completed_at': completed_at,
        })

    def list_tracking_records(self, order_id):
        return [r for r in self.tracking if r['order_id'] == order_id]

    @contextmanager
    def order_lock(self, order_id):
        self._maybe_fail('order_lock')
        if order_id in self.locked_orders:
            yield False
            return
        self.locked_orders.add(order_id)
        try:
            yield True
        finally:
            self.locked_orders.discard(order_id)
