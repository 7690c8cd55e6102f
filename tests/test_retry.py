"""Tests for throttling retry policy."""

from unittest.mock import MagicMock, patch

import pytest

from src.modules.deploy.errors import DeploymentFailure, ThrottlingError
from src.modules.deploy.retry import ExponentialBackoff, call_with_backoff


class TestExponentialBackoff:
    """Tests for ExponentialBackoff intervals."""

    def test_intervals_grow_and_are_capped(self) -> None:
        """Test base interval doubles up to max_interval."""
        backoff = ExponentialBackoff(
            initial_interval=1.0,
            multiplier=2.0,
            max_interval=5.0,
            randomization_factor=0.0,
            max_retries=5,
        )

        assert backoff.intervals() == [1.0, 2.0, 4.0, 5.0, 5.0]

    @patch("src.modules.deploy.retry.random.uniform")
    def test_intervals_are_jittered(self, mock_uniform: MagicMock) -> None:
        """Test jitter draws from [interval * (1 - f), interval * (1 + f)]."""
        mock_uniform.side_effect = lambda low, high: high
        backoff = ExponentialBackoff(initial_interval=2.0, randomization_factor=0.5, max_retries=2)

        assert backoff.intervals() == [3.0, 6.0]
        mock_uniform.assert_any_call(1.0, 3.0)

    def test_zero_retries_has_no_intervals(self) -> None:
        """Test max_retries=0 disables retrying."""
        assert ExponentialBackoff(max_retries=0).intervals() == []


class TestCallWithBackoff:
    """Tests for call_with_backoff."""

    def test_returns_first_success(self) -> None:
        """Test no sleep when the first call succeeds."""
        func = MagicMock(return_value="ok")
        sleeps: list[float] = []

        assert call_with_backoff(func, ExponentialBackoff(), sleep=sleeps.append) == "ok"
        assert sleeps == []

    def test_retries_throttling_then_succeeds(self) -> None:
        """Test throttled calls are retried with backoff."""
        func = MagicMock(
            side_effect=[ThrottlingError("DescribeStacks", "Rate exceeded"), "ok"]
        )
        sleeps: list[float] = []
        backoff = ExponentialBackoff(randomization_factor=0.0)

        assert call_with_backoff(func, backoff, sleep=sleeps.append) == "ok"
        assert func.call_count == 2
        assert sleeps == [1.0]

    def test_gives_up_after_max_retries(self) -> None:
        """Test ThrottlingError propagates once retries are exhausted."""
        func = MagicMock(side_effect=ThrottlingError("CreateStack", "Rate exceeded"))
        backoff = ExponentialBackoff(randomization_factor=0.0, max_retries=2)

        with pytest.raises(ThrottlingError):
            call_with_backoff(func, backoff, sleep=lambda _: None)

        assert func.call_count == 3

    def test_terminal_failures_are_not_retried(self) -> None:
        """Test non-throttling errors propagate immediately."""
        func = MagicMock(side_effect=DeploymentFailure("hub-vpc", "ROLLBACK_COMPLETE"))
        sleeps: list[float] = []

        with pytest.raises(DeploymentFailure):
            call_with_backoff(func, ExponentialBackoff(), sleep=sleeps.append)

        assert func.call_count == 1
        assert sleeps == []
