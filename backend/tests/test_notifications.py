# Overview: Pytest coverage for stock-threshold notifications.

import pytest

from backoffice.errors import NotFoundError
from backoffice.models import Notification
from backoffice.services import notification_service, stock_ledger_service
from backoffice.services.notification_service import (
    TYPE_STOCK_CRITICAL,
    TYPE_STOCK_LOW,
    TYPE_STOCK_OUT,
    classify_stock,
)


class TestClassifyStock:
    @pytest.mark.parametrize("stock,min_stock,expected", [
        (0, 10, TYPE_STOCK_OUT),
        (0, 0, TYPE_STOCK_OUT),
        (2, 10, TYPE_STOCK_CRITICAL),
        (1, 3, TYPE_STOCK_CRITICAL),  # floor(0.75) -> at least 1
        (3, 10, TYPE_STOCK_LOW),
        (10, 10, TYPE_STOCK_LOW),
        (11, 10, None),
        (1, 0, None),
    ])
    def test_levels(self, stock, min_stock, expected):
        assert classify_stock(stock, min_stock) == expected


class TestCheckStockLevels:
    def test_creates_one_notification_per_level(self, db_session, make_product):
        out = make_product(stock=0, min_stock=5, name="Sucre")
        low = make_product(stock=4, min_stock=5)
        make_product(stock=50, min_stock=5)

        created = notification_service.check_stock_levels()

        by_product = {n.product_id: n for n in created}
        assert set(by_product) == {out.id, low.id}
        assert by_product[out.id].type == TYPE_STOCK_OUT
        assert by_product[out.id].priority == "critical"
        assert "Sucre" in by_product[out.id].message
        assert by_product[low.id].type == TYPE_STOCK_LOW

    def test_rerun_does_not_duplicate_unread(self, db_session, make_product):
        make_product(stock=0, min_stock=5)
        notification_service.check_stock_levels()

        assert notification_service.check_stock_levels() == []
        assert db_session.query(Notification).count() == 1

    def test_new_level_after_stock_change(self, db_session, make_product):
        p = make_product(stock=4, min_stock=5)
        notification_service.check_stock_levels()
        stock_ledger_service.adjust(p.id, -4, "adjustment")

        created = notification_service.check_stock_levels()
        assert [n.type for n in created] == [TYPE_STOCK_OUT]

    def test_mark_read(self, db_session, make_product):
        make_product(stock=0, min_stock=1)
        [notification] = notification_service.check_stock_levels()
        assert notification_service.unread_count() == 1

        notification_service.mark_read(notification.id)

        assert notification_service.unread_count() == 0
        assert notification_service.check_stock_levels()[0].type == TYPE_STOCK_OUT

    def test_mark_read_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            notification_service.mark_read(404)
