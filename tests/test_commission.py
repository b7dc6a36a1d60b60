"""Tests for the commission split and the commission settings singleton."""

from decimal import Decimal

import pytest

from config import DEFAULT_COMMISSION_RATE
from finance_logic import (
    CommissionService,
    ForbiddenError,
    InvalidCommissionRate,
    ValidationError,
    compute_settlement,
)


class TestComputeSettlement:
    def test_five_percent_of_thousand(self) -> None:
        s = compute_settlement(Decimal("1000.00"), Decimal("0.05"))
        assert s.commission == Decimal("50.00")
        assert s.seller_amount == Decimal("950.00")

    @pytest.mark.parametrize("total,rate", [
        ("0.00", "0.05"),
        ("0.01", "0.05"),
        ("19.99", "0.075"),
        ("333.33", "0.3333"),
        ("1234.56", "1"),
        ("1234.56", "0"),
        ("99999.99", "0.1234"),
    ])
    def test_parts_add_up_to_total(self, total: str, rate: str) -> None:
        s = compute_settlement(Decimal(total), Decimal(rate))
        assert s.commission + s.seller_amount == Decimal(total)
        assert s.commission >= 0
        assert s.seller_amount >= 0

    def test_commission_rounds_half_up(self) -> None:
        # 10.10 * 0.05 = 0.505
        s = compute_settlement(Decimal("10.10"), Decimal("0.05"))
        assert s.commission == Decimal("0.51")
        assert s.seller_amount == Decimal("9.59")

    def test_zero_rate_gives_seller_everything(self) -> None:
        s = compute_settlement(Decimal("250.00"), Decimal("0"))
        assert s.commission == Decimal("0.00")
        assert s.seller_amount == Decimal("250.00")

    def test_full_rate_gives_admin_everything(self) -> None:
        s = compute_settlement(Decimal("250.00"), Decimal("1"))
        assert s.commission == Decimal("250.00")
        assert s.seller_amount == Decimal("0.00")

    @pytest.mark.parametrize("rate", ["-0.01", "1.0001", "5"])
    def test_rate_out_of_range_rejected(self, rate: str) -> None:
        with pytest.raises(InvalidCommissionRate):
            compute_settlement(Decimal("100.00"), Decimal(rate))

    def test_negative_total_rejected(self) -> None:
        with pytest.raises(ValidationError):
            compute_settlement(Decimal("-1.00"), Decimal("0.05"))

    def test_string_inputs_accepted(self) -> None:
        s = compute_settlement("80.00", "0.125")
        assert s.commission == Decimal("10.00")


class TestCommissionSettings:
    def test_seeded_default(self, session) -> None:
        settings = CommissionService(session).get_settings()
        assert settings["commission_rate"] == DEFAULT_COMMISSION_RATE
        assert settings["commission_percentage"] == (DEFAULT_COMMISSION_RATE * 100).quantize(Decimal("0.01"))

    def test_super_admin_updates_rate(self, session, super_admin) -> None:
        service = CommissionService(session)
        settings = service.update_settings(super_admin, Decimal("0.075"), "holiday promo")
        assert settings["commission_rate"] == Decimal("0.0750")
        assert settings["commission_percentage"] == Decimal("7.50")
        assert settings["updated_by"] == super_admin.user_id
        assert settings["update_note"] == "holiday promo"
        assert service.get_rate() == Decimal("0.0750")

    def test_plain_admin_cannot_update(self, session, admin) -> None:
        with pytest.raises(ForbiddenError):
            CommissionService(session).update_settings(admin, Decimal("0.10"))

    def test_seller_cannot_update(self, session, seller) -> None:
        with pytest.raises(ForbiddenError):
            CommissionService(session).update_settings(seller["actor"], Decimal("0.10"))

    @pytest.mark.parametrize("rate", ["-0.01", "1.5"])
    def test_out_of_range_leaves_rate_unchanged(self, session, super_admin, rate: str) -> None:
        service = CommissionService(session)
        before = service.get_rate()
        with pytest.raises(InvalidCommissionRate):
            service.update_settings(super_admin, Decimal(rate))
        assert service.get_rate() == before

    def test_bounds_are_inclusive(self, session, super_admin) -> None:
        service = CommissionService(session)
        assert service.update_settings(super_admin, Decimal("0"))["commission_rate"] == Decimal("0")
        assert service.update_settings(super_admin, Decimal("1"))["commission_rate"] == Decimal("1")
