# Overview: Pytest coverage for the Flask CLI command groups.

from backoffice.models import Notification, User
from backoffice.services import cash_session_service


class TestCli:
    def test_system_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "init"])
        second = runner.invoke(args=["system", "init"])

        assert first.exit_code == 0, first.output
        assert "Created user: admin" in first.output
        assert "already exists" in second.output
        assert db_session.query(User).count() == 3

    def test_check_stock(self, app, db_session, make_product):
        make_product(stock=0, min_stock=2, name="Huile")

        result = app.test_cli_runner().invoke(args=["inventory", "check-stock"])

        assert result.exit_code == 0, result.output
        assert "Huile" in result.output
        assert db_session.query(Notification).count() == 1

    def test_movements(self, app, db_session, product):
        result = app.test_cli_runner().invoke(args=["inventory", "movements", "--product-id", str(product.id)])
        assert "reason=initial" in result.output

    def test_cash_current(self, app, db_session):
        runner = app.test_cli_runner()
        assert "No open cash session" in runner.invoke(args=["cash", "current"]).output

        cash_session_service.open_session(2500)
        assert "opening=2500" in runner.invoke(args=["cash", "current"]).output

    def test_promos_list(self, app, db_session, save10):
        result = app.test_cli_runner().invoke(args=["promos", "list"])
        assert "SAVE10: percentage 10 used 0/unlimited (active)" in result.output
