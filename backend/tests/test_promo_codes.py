# Overview: Pytest coverage for promo code validation and administration.

from datetime import timedelta

import pytest

from backoffice.errors import (
    ConflictError,
    PromoBelowMinimumError,
    PromoExpiredError,
    PromoNotFoundError,
    PromoUsageLimitError,
    ValidationError,
)
from backoffice.models import PromoCode
from backoffice.services import promo_service
from backoffice.time_utils import utcnow


class TestValidate:
    def test_percentage_discount(self, db_session, save10):
        result = promo_service.validate("SAVE10", 2000)
        assert result.discount_cents == 200
        assert result.final_cents == 1800

    def test_code_is_normalized(self, db_session, save10):
        assert promo_service.validate("  save10 ", 2000).discount_cents == 200

    def test_below_minimum_carries_minimum(self, db_session, save10):
        with pytest.raises(PromoBelowMinimumError) as exc:
            promo_service.validate("SAVE10", 500)
        assert exc.value.min_amount_cents == 1000
        assert exc.value.to_dict()["details"]["min_amount_cents"] == 1000

    def test_unknown_code(self, db_session):
        with pytest.raises(PromoNotFoundError) as exc:
            promo_service.validate("NOPE", 2000)
        assert exc.value.message == "Code promo invalide"

    def test_expired_is_distinct_from_unknown(self, db_session):
        db_session.add(PromoCode(
            code="OLD",
            promo_type="fixed",
            value=100,
            expires_at=utcnow() - timedelta(days=1),
        ))
        db_session.commit()

        with pytest.raises(PromoExpiredError) as exc:
            promo_service.validate("OLD", 2000)
        assert exc.value.message == "Code promo expiré"

    def test_usage_limit(self, db_session):
        db_session.add(PromoCode(code="ONCE", promo_type="fixed", value=100, max_uses=1, used_count=1))
        db_session.commit()
        with pytest.raises(PromoUsageLimitError):
            promo_service.validate("ONCE", 2000)

    def test_fixed_discount_never_exceeds_amount(self, db_session):
        db_session.add(PromoCode(code="BIG", promo_type="fixed", value=5000))
        db_session.commit()

        result = promo_service.validate("BIG", 3000)
        assert result.discount_cents == 3000
        assert result.final_cents == 0

    def test_inactive_code_is_unknown(self, db_session, save10):
        promo_service.deactivate_promo_code(save10.id)
        with pytest.raises(PromoNotFoundError):
            promo_service.validate("SAVE10", 2000)

    def test_validate_does_not_consume(self, db_session, save10):
        promo_service.validate("SAVE10", 2000)
        assert promo_service.get_promo_code(save10.id).used_count == 0

    def test_percentage_rounds_half_up(self, db_session, save10):
        # 10% of 1005 = 100.5
        assert promo_service.validate("SAVE10", 1005).discount_cents == 101


class TestAdmin:
    def test_create_normalizes_code(self, db_session):
        promo = promo_service.create_promo_code({"code": " summer ", "promo_type": "fixed", "value": 500})
        assert promo.code == "SUMMER"

    def test_duplicate_code_conflicts(self, db_session, save10):
        with pytest.raises(ConflictError):
            promo_service.create_promo_code({"code": "save10", "promo_type": "fixed", "value": 1})

    def test_percentage_over_100_rejected(self, db_session):
        with pytest.raises(ValidationError):
            promo_service.create_promo_code({"code": "X", "promo_type": "percentage", "value": 150})

    def test_update_value_checks_existing_type(self, db_session, save10):
        with pytest.raises(ValidationError):
            promo_service.update_promo_code(save10.id, {"value": 101})

    def test_list_hides_inactive_and_expired(self, db_session, save10):
        promo_service.create_promo_code({
            "code": "GONE",
            "promo_type": "fixed",
            "value": 1,
            "expires_at": (utcnow() - timedelta(hours=1)).isoformat(),
        })
        codes = [p.code for p in promo_service.list_promo_codes()]
        assert codes == ["SAVE10"]
        assert len(promo_service.list_promo_codes(include_inactive=True)) == 2
