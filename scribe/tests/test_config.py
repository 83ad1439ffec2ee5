"""Test configuration validation and the plan catalog."""
import logging

import pytest

from scribe.core.config import Settings, validate_config
from scribe.core.errors import ConfigurationError, ValidationError
from scribe.features.plans.service import get_plan, get_price_id, parse_billing_cycle, resolve_checkout_plan
from scribe.models.checkout import BillingCycle
from scribe.models.plan import PlanType


def test_validate_config_warns_on_missing_keys(caplog):
    cfg = Settings(_env_file=None, DATABASE_URL=None, STRIPE_SECRET_KEY=None)

    with caplog.at_level(logging.WARNING):
        assert validate_config(strict=False, settings_obj=cfg) is True

    assert "STRIPE_SECRET_KEY" in caplog.text


def test_validate_config_strict_raises():
    cfg = Settings(_env_file=None, DATABASE_URL=None)

    with pytest.raises(RuntimeError):
        validate_config(strict=True, settings_obj=cfg)


def test_validate_config_rejects_unknown_quota_mode():
    cfg = Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk",
        STRIPE_WEBHOOK_SECRET="wh",
        GROQ_API_KEY="gk",
        QUOTA_ENFORCEMENT="lenient",
    )

    with pytest.raises(RuntimeError, match="QUOTA_ENFORCEMENT"):
        validate_config(strict=True, settings_obj=cfg)


def test_unknown_plan_type_resolves_to_free():
    assert get_plan("ENTERPRISE").plan_type == PlanType.FREE
    assert get_plan(None).plan_type == PlanType.FREE


def test_checkout_plan_defaults_to_pro():
    assert resolve_checkout_plan(None) == PlanType.PRO
    with pytest.raises(ValidationError):
        resolve_checkout_plan("FREE")


def test_billing_cycle_parsing():
    assert parse_billing_cycle(None) == BillingCycle.MONTHLY
    assert parse_billing_cycle("YEARLY") == BillingCycle.YEARLY


def test_free_plan_has_no_price():
    with pytest.raises(ConfigurationError):
        get_price_id(PlanType.FREE, BillingCycle.MONTHLY)
