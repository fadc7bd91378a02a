"""
PostgresFulfillmentStore against a mocked PostgresDB.

Checks the SQL contract (column allow-lists, commit/rollback, advisory lock)
without a live database.
"""
from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2.extras import Json

from services.fulfillment import FulfillmentRouter
from services.fulfillment_providers.digital import DigitalDownloadProvider
from services.fulfillment_providers.gelato import GelatoPrintProvider
from services.fulfillment_store import PostgresFulfillmentStore
from tests.factories import OrderFactory, OrderItemFactory


@pytest.fixture
def db():
    db = MagicMock()
    db.execute.return_value.rowcount = 1
    return db


@pytest.fixture
def pg_store(db):
    return PostgresFulfillmentStore(db)


class TestReads:

    def test_get_order_builds_model(self, pg_store, db):
        db.execute.return_value.fetchone.return_value = {
            'id': 'ord_1',
            'order_number': 'PP-1',
            'shipping_address': '{"name": "Ada"}',
            'not_a_column': 'ignored',
        }

        order = pg_store.get_order('ord_1')

        assert order.id == 'ord_1'
        assert order.label == 'PP-1'
        assert order.shipping_address == {'name': 'Ada'}
        assert not hasattr(order, 'not_a_column')

    def test_get_order_missing(self, pg_store, db):
        db.execute.return_value.fetchone.return_value = None
        assert pg_store.get_order('ord_x') is None

    def test_list_order_items_parses_json(self, pg_store, db):
        db.execute.return_value.fetchall.return_value = [
            {'id': 'item_1', 'order_id': 'ord_1', 'product_data': '{"product_type": "digital_download"}',
             'image_ids': '["img_1", "img_2"]', 'quantity': None},
        ]

        items = pg_store.list_order_items('ord_1')

        assert items[0].product_type == 'digital_download'
        assert items[0].target_image_ids == ['img_1', 'img_2']
        assert items[0].quantity == 1

    def test_get_image_asset(self, pg_store, db):
        db.execute.return_value.fetchone.return_value = {'id': 'img_1', 'storage_key': 'k', 'filename': 'f'}
        assert pg_store.get_image_asset('img_1') == {'id': 'img_1', 'storage_key': 'k', 'filename': 'f'}


class TestWrites:

    def test_update_order_commits(self, pg_store, db):
        pg_store.update_order('ord_1', fulfillment_status='fulfilled')

        sql, params = db.execute.call_args[0]
        assert sql.startswith("UPDATE orders SET fulfillment_status = %s, updated_at = NOW()")
        assert params == ['fulfilled', 'ord_1']
        db.commit.assert_called_once()

    def test_update_order_rejects_unknown_columns(self, pg_store, db):
        with pytest.raises(ValueError):
            pg_store.update_order('ord_1', status='shipped')
        db.execute.assert_not_called()

    def test_update_order_rejects_empty_update(self, pg_store):
        with pytest.raises(ValueError):
            pg_store.update_order('ord_1')

    def test_update_order_item_missing_row_raises(self, pg_store, db):
        db.execute.return_value.rowcount = 0
        with pytest.raises(LookupError):
            pg_store.update_order_item('item_x', download_access_count=0)

    def test_failed_write_rolls_back_and_raises(self, pg_store, db):
        db.execute.side_effect = psycopg2.OperationalError("connection reset")

        with pytest.raises(psycopg2.OperationalError):
            pg_store.update_order('ord_1', digital_delivery_status='sent')

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_tracking_data_is_wrapped_as_json(self, pg_store, db):
        pg_store.insert_tracking_record('ord_1', 'download', 'fulfilled', 'ok', {'fulfillment_id': 'digital_ord_1'}, None, None)

        params = db.execute.call_args[0][1]
        assert isinstance(params[4], Json)
        db.commit.assert_called_once()


class TestOrderLock:

    def test_acquired_lock_is_released(self, pg_store, db):
        db.execute.return_value.fetchone.return_value = {'locked': True}

        with pg_store.order_lock('ord_1') as acquired:
            assert acquired is True

        statements = [c[0][0] for c in db.execute.call_args_list]
        assert 'pg_try_advisory_lock' in statements[0]
        assert 'pg_advisory_unlock' in statements[-1]

    def test_held_lock_is_not_released(self, pg_store, db):
        db.execute.return_value.fetchone.return_value = {'locked': False}

        with pg_store.order_lock('ord_1') as acquired:
            assert acquired is False

        statements = [c[0][0] for c in db.execute.call_args_list]
        assert not any('pg_advisory_unlock' in s for s in statements)


class AbortingDB:
    """
    PostgresDB stand-in with Postgres transaction semantics.

    After a failed statement every later statement is rejected until
    rollback(), the way a real connection behaves inside an aborted
    transaction. fail_next_on makes the first statement containing that
    text fail.
    """

    def __init__(self, fail_next_on=None):
        self.fail_next_on = fail_next_on
        self.aborted = False
        self.rollbacks = 0
        self.pending = []
        self.committed = []

    def execute(self, sql, params=None):
        if self.aborted:
            raise psycopg2.InternalError(
                "current transaction is aborted, commands ignored until end of transaction block"
            )
        if self.fail_next_on and self.fail_next_on in sql:
            self.fail_next_on = None
            self.aborted = True
            raise psycopg2.OperationalError("transient read failure")

        self.pending.append(sql)
        cur = MagicMock()
        cur.rowcount = 1
        cur.fetchall.return_value = []
        if 'pg_try_advisory_lock' in sql:
            cur.fetchone.return_value = {'locked': True}
        elif 'FROM image_catalog' in sql:
            image_id = params[0]
            cur.fetchone.return_value = {
                'id': image_id,
                'storage_key': f'portraits/{image_id}.png',
                'filename': f'portrait-{image_id}',
            }
        else:
            cur.fetchone.return_value = None
        return cur

    def commit(self):
        # COMMIT inside an aborted transaction is a rollback
        if not self.aborted:
            self.committed.extend(self.pending)
        self.pending = []
        self.aborted = False

    def rollback(self):
        self.pending = []
        self.aborted = False
        self.rollbacks += 1


class TestConnectionRecovery:

    @pytest.mark.parametrize("read", [
        lambda s: s.get_order('ord_1'),
        lambda s: s.list_order_items('ord_1'),
        lambda s: s.get_image_asset('img_1'),
        lambda s: s.list_digital_items('ord_1'),
        lambda s: s.list_tracking_records('ord_1'),
    ])
    def test_failed_read_leaves_connection_usable(self, read):
        db = AbortingDB(fail_next_on='SELECT')
        pg_store = PostgresFulfillmentStore(db)

        with pytest.raises(psycopg2.OperationalError):
            read(pg_store)

        assert db.rollbacks == 1
        pg_store.update_order('ord_1', fulfillment_status='failed')
        assert any(s.startswith("UPDATE orders SET fulfillment_status") for s in db.committed)

    def test_failed_lock_acquisition_rolls_back(self):
        db = AbortingDB(fail_next_on='pg_try_advisory_lock')
        pg_store = PostgresFulfillmentStore(db)

        with pytest.raises(psycopg2.OperationalError):
            with pg_store.order_lock('ord_1'):
                pass

        assert db.rollbacks == 1
        assert db.aborted is False

    def test_read_failure_in_one_provider_does_not_break_the_next(
            self, clock, notifier, gelato_client, print_storage):
        db = AbortingDB(fail_next_on='FROM image_catalog')
        pg_store = PostgresFulfillmentStore(db)
        router = FulfillmentRouter(pg_store, [
            DigitalDownloadProvider(pg_store, clock=clock, notifier=notifier),
            GelatoPrintProvider(pg_store, client=gelato_client, storage=print_storage),
        ])
        order = OrderFactory.build()
        item = OrderItemFactory.physical(order, image_id='img_1')

        results = router.fulfill_order(order, [item])

        by_provider = {r.provider: r for r in results}
        assert by_provider['digital_download'].success is False
        assert 'transient read failure' in by_provider['digital_download'].error
        assert by_provider['gelato_print'].success is True
        assert by_provider['gelato_print'].fulfillment_id == 'gel_ord_123'
        assert any(
            s.startswith("UPDATE orders SET fulfillment_status") for s in db.committed
        )
        assert any('INSERT INTO order_fulfillment_tracking' in s for s in db.committed)
