"""Unit tests for deterministic naming and schedule expressions."""
from __future__ import annotations

import pytest

from deployer.reconciler import naming
from deployer.reconciler.errors import ConfigurationError


def test_short_names_are_kept():
    assert naming.bounded_name("api-example-com") == "api-example-com"


def test_long_names_are_truncated_deterministically():
    long_name = "a" * 40 + "-" + "b" * 40
    first = naming.bounded_name(long_name)
    second = naming.bounded_name(long_name)

    assert first == second
    assert len(first) <= naming.MAX_RESOURCE_NAME_LENGTH


def test_long_names_with_same_prefix_do_not_collide():
    prefix = "x" * 70
    assert naming.bounded_name(prefix + "-one") != naming.bounded_name(prefix + "-two")


def test_function_name_from_domain():
    assert naming.function_name("API.Example.com.") == "api-example-com"


def test_trigger_rule_name_replaces_unsafe_characters():
    name = naming.trigger_rule_name("api-example-com", "jobs/cleanup.handler")
    assert name == "api-example-com-jobs-cleanup-handler"


@pytest.mark.parametrize(
    "rate_ms,expected",
    [
        (60_000, "rate(1 minute)"),
        (5 * 60_000, "rate(5 minutes)"),
        (3_600_000, "rate(1 hour)"),
        (90 * 60_000, "rate(90 minutes)"),
        (2 * 86_400_000, "rate(2 days)"),
    ],
)
def test_schedule_expression(rate_ms, expected):
    assert naming.schedule_expression(rate_ms) == expected


@pytest.mark.parametrize("rate_ms", [0, -60_000, 1500, True])
def test_schedule_expression_rejects_unrepresentable_rates(rate_ms):
    with pytest.raises(ConfigurationError):
        naming.schedule_expression(rate_ms)


def test_validate_domain_name():
    assert naming.validate_domain_name("WWW.Example.COM.") == "www.example.com"
    with pytest.raises(ConfigurationError):
        naming.validate_domain_name("localhost")
    with pytest.raises(ConfigurationError):
        naming.validate_domain_name(None)
    assert naming.is_valid_domain_name("_acme.example.com", record=True)
    assert not naming.is_valid_domain_name("_acme.example.com")
