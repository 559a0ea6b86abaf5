"""Tests for quota evaluation and Service Quotas reads."""

from __future__ import annotations

import pytest
from aws_mock import MockAwsState

from sg2pl.aws import AwsClients
from sg2pl.errors import PermanentError, TransientError
from sg2pl.quota import (
    QuotaKind,
    QuotaLevel,
    QuotaReader,
    evaluate_quota,
    proportional_margin,
)


class TestEvaluateQuota:
    """Tests for the dual-policy threshold check."""

    def test_within_both_margins(self) -> None:
        """Plenty of headroom is OK."""
        status = evaluate_quota(QuotaKind.SECURITY_GROUP_RULES, 50, 120, 10, 10)

        assert status.level == QuotaLevel.OK
        assert status.headroom == 70
        assert not status.exceeded

    def test_near_limit_warns(self) -> None:
        """115 of 120 with base 10 and percent 10 is a warning."""
        status = evaluate_quota(QuotaKind.SECURITY_GROUP_RULES, 115, 120, 10, 10)

        assert status.level == QuotaLevel.WARNING
        assert status.absolute_breached
        assert status.proportional_breached

    def test_absolute_margin_alone(self) -> None:
        """A large limit can still breach the absolute margin only."""
        status = evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 990, 1000, 20, 0)

        assert status.absolute_breached
        assert not status.proportional_breached
        assert status.is_warning

    def test_proportional_margin_alone(self) -> None:
        """A percent margin can trigger without the base margin."""
        status = evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 85, 100, 5, 20)

        assert not status.absolute_breached
        assert status.proportional_breached

    def test_headroom_equal_to_threshold_warns(self) -> None:
        """The comparison is inclusive."""
        status = evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 90, 100, 10, 0)
        assert status.is_warning

    def test_exceeded(self) -> None:
        """Counts above the limit are exceeded, counts at the limit are not."""
        assert evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 3, 2, 0, 0).exceeded
        assert not evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 2, 2, 0, 0).exceeded

    def test_zero_thresholds_never_warn_below_limit(self) -> None:
        status = evaluate_quota(QuotaKind.PREFIX_LIST_ENTRIES, 99, 100, 0, 0)
        assert status.level == QuotaLevel.OK

    @pytest.mark.parametrize(
        ("limit", "percent", "expected"),
        [(120, 10, 12), (60, 10, 6), (7, 10, 1), (100, 0, 0), (1000, 5, 50)],
    )
    def test_proportional_margin_rounds_up(self, limit: int, percent: int, expected: int) -> None:
        assert proportional_margin(limit, percent) == expected

    def test_describe_mentions_kind_and_usage(self) -> None:
        status = evaluate_quota(QuotaKind.SECURITY_GROUP_RULES, 115, 120, 10, 10)
        text = status.describe()

        assert "security_group_rules" in text
        assert "115/120" in text


class TestQuotaReader:
    """Tests for QuotaReader against mocked Service Quotas."""

    def test_applied_value(self, aws_state: MockAwsState, clients: AwsClients) -> None:
        """The applied quota value is returned as an int."""
        aws_state.set_quota("us-east-1", "vpc", "L-0EA8095F", 120.0)

        assert QuotaReader(clients).get_limit("us-east-1", "vpc", "L-0EA8095F") == 120

    def test_default_value_fallback(self, aws_state: MockAwsState, clients: AwsClients) -> None:
        """Without an applied value the AWS default is used."""
        aws_state.set_default_quota("us-east-1", "vpc", "L-0EA8095F", 60.0)

        assert QuotaReader(clients).get_limit("us-east-1", "vpc", "L-0EA8095F") == 60
        assert aws_state.call_count("GetAWSDefaultServiceQuota") == 1

    def test_values_are_cached(self, aws_state: MockAwsState, clients: AwsClients) -> None:
        """Repeated reads in one invocation hit Service Quotas once."""
        aws_state.set_quota("us-east-1", "vpc", "L-0EA8095F", 120.0)
        reader = QuotaReader(clients)

        reader.get_limit("us-east-1", "vpc", "L-0EA8095F")
        reader.get_limit("us-east-1", "vpc", "L-0EA8095F")

        assert aws_state.call_count("GetServiceQuota") == 1

    def test_clear_rereads_limit(self, aws_state: MockAwsState, clients: AwsClients) -> None:
        aws_state.set_quota("us-east-1", "vpc", "L-0EA8095F", 60.0)
        reader = QuotaReader(clients)
        reader.get_limit("us-east-1", "vpc", "L-0EA8095F")

        aws_state.set_quota("us-east-1", "vpc", "L-0EA8095F", 1000.0)
        reader.clear()

        assert reader.get_limit("us-east-1", "vpc", "L-0EA8095F") == 1000
        assert aws_state.call_count("GetServiceQuota") == 2

    def test_unknown_quota_is_permanent(self, clients: AwsClients) -> None:
        """A quota with neither applied nor default value cannot be evaluated."""
        with pytest.raises(PermanentError):
            QuotaReader(clients).get_limit("us-east-1", "vpc", "L-MISSING")

    def test_throttling_is_transient(self, aws_state: MockAwsState, clients: AwsClients) -> None:
        aws_state.set_quota("us-east-1", "vpc", "L-0EA8095F", 120.0)
        aws_state.inject_error("GetServiceQuota", "TooManyRequestsException")

        with pytest.raises(TransientError):
            QuotaReader(clients).get_limit("us-east-1", "vpc", "L-0EA8095F")
