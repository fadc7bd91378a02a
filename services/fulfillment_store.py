"""
Fulfillment persistence contract.

The router and providers never issue SQL themselves; they go through a
FulfillmentStore. PostgresFulfillmentStore is the production implementation
over the shared `orders` / `order_items` tables, the read-only
`image_catalog`, and the append-only `order_fulfillment_tracking` audit log.

Contract notes:
- update_order / update_order_item overwrite the given columns on one row,
  keyed by id. Repeated writes to the same row are last-write-wins.
- Writes commit immediately. Any failed statement, read or write, rolls back
  and raises, so the shared connection stays usable for the next caller.
- order_lock is a non-blocking, session-scoped lock per order id. It yields
  True when acquired and False when another session holds it.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import Json

from models import Order, OrderItem

logger = logging.getLogger(__name__)

ORDER_WRITABLE_COLUMNS = frozenset({
    'fulfillment_type',
    'fulfillment_status',
    'digital_delivery_status',
    'download_expires_at',
})

ORDER_ITEM_WRITABLE_COLUMNS = frozenset({
    'is_digital',
    'download_url',
    'download_url_generated_at',
    'download_expires_at',
    'digital_file_format',
    'digital_file_size_bytes',
    'download_access_count',
})


def _check_columns(fields, allowed, table):
    if not fields:
        raise ValueError(f"No columns given for {table} update")
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Columns not writable on {table}: {sorted(unknown)}")


class FulfillmentStore(ABC):
    """Keyed record store used by the fulfillment subsystem."""

    @abstractmethod
    def get_order(self, order_id):
        pass

    @abstractmethod
    def list_order_items(self, order_id):
        pass

    @abstractmethod
    def get_image_asset(self, image_id):
        """Return {'id', 'storage_key', 'filename'} for a catalog image, or None."""
        pass

    @abstractmethod
    def update_order(self, order_id, **fields):
        pass

    @abstractmethod
    def update_order_item(self, item_id, **fields):
        pass

    @abstractmethod
    def list_digital_items(self, order_id):
        """Rows of the order's items with is_digital = true."""
        pass

    @abstractmethod
    def expire_digital_items(self, order_id, expires_at):
        """Set download_expires_at on every digital item of the order. Returns the row count."""
        pass

    @abstractmethod
    def insert_tracking_record(self, order_id, fulfillment_method, status, status_message,
                               tracking_data, started_at, completed_at):
        pass

    @abstractmethod
    def list_tracking_records(self, order_id):
        pass

    @abstractmethod
    def order_lock(self, order_id):
        pass


class PostgresFulfillmentStore(FulfillmentStore):
    def __init__(self, db):
        self.db = db

    def _write(self, sql, params):
        try:
            cur = self.db.execute(sql, params)
            self.db.commit()
            return cur.rowcount
        except psycopg2.Error:
            # Leave the connection usable for the next (best-effort) write
            self.db.rollback()
            raise

    def _read(self, sql, params, many=False):
        try:
            cur = self.db.execute(sql, params)
            return cur.fetchall() if many else cur.fetchone()
        except psycopg2.Error:
            # An aborted transaction rejects every later statement on the connection
            self.db.rollback()
            raise

    def get_order(self, order_id):
        row = self._read("SELECT * FROM orders WHERE id = %s", (order_id,))
        return Order.from_row(row)

    def list_order_items(self, order_id):
        rows = self._read(
            "SELECT * FROM order_items WHERE order_id = %s ORDER BY created_at, id",
            (order_id,), many=True
        )
        return [OrderItem.from_row(r) for r in rows]

    def get_image_asset(self, image_id):
        row = self._read(
            "SELECT id, storage_key, filename FROM image_catalog WHERE id = %s",
            (image_id,)
        )
        return dict(row) if row else None

    def update_order(self, order_id, **fields):
        _check_columns(fields, ORDER_WRITABLE_COLUMNS, 'orders')
        assignments = ", ".join(f"{col} = %s" for col in fields)
        params = list(fields.values()) + [order_id]
        return self._write(
            f"UPDATE orders SET {assignments}, updated_at = NOW() WHERE id = %s",
            params
        )

    def update_order_item(self, item_id, **fields):
        _check_columns(fields, ORDER_ITEM_WRITABLE_COLUMNS, 'order_items')
        assignments = ", ".join(f"{col} = %s" for col in fields)
        params = list(fields.values()) + [item_id]
        updated = self._write(f"UPDATE order_items SET {assignments} WHERE id = %s", params)
        if updated == 0:
            raise LookupError(f"order_item {item_id} not found")
        return updated

    def list_digital_items(self, order_id):
        rows = self._read(
            """
            SELECT id, download_access_count, download_expires_at
            FROM order_items
            WHERE order_id = %s AND is_digital = TRUE
            ORDER BY created_at, id
            """,
            (order_id,), many=True
        )
        return [dict(r) for r in rows]

    def expire_digital_items(self, order_id, expires_at):
        return self._write(
            "UPDATE order_items SET download_expires_at = %s WHERE order_id = %s AND is_digital = TRUE",
            (expires_at, order_id)
        )

    def insert_tracking_record(self, order_id, fulfillment_method, status, status_message,
                               tracking_data, started_at, completed_at):
        self._write(
            """
            INSERT INTO order_fulfillment_tracking (
                order_id, fulfillment_method, status, status_message,
                tracking_data, started_at, completed_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (order_id, fulfillment_method, status, status_message,
             Json(tracking_data or {}), started_at, completed_at)
        )

    def list_tracking_records(self, order_id):
        rows = self._read(
            """
            SELECT id, order_id, fulfillment_method, status, status_message,
                   tracking_data, started_at, completed_at
            FROM order_fulfillment_tracking
            WHERE order_id = %s
            ORDER BY id
            """,
            (order_id,), many=True
        )
        return [dict(r) for r in rows]

    @contextmanager
    def order_lock(self, order_id):
        # Session-level advisory lock: survives the per-write commits below,
        # unlike SELECT ... FOR UPDATE.
        row = self._read(
            "SELECT pg_try_advisory_lock(hashtext(%s)) AS locked", (str(order_id),)
        )
        self.db.commit()
        locked = bool(row['locked'])
        try:
            yield locked
        finally:
            if locked:
                try:
                    self.db.execute("SELECT pg_advisory_unlock(hashtext(%s))", (str(order_id),))
                    self.db.commit()
                except psycopg2.Error as e:
                    # Released anyway when the connection closes at request teardown
                    logger.error(f"[FulfillmentStore] Failed to release lock for order {order_id}: {e}")
                    self.db.rollback()
