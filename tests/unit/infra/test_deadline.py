"""Tests for the restartable Deadline."""

import asyncio

import pytest

from fleetlink.infra.transports.deadline import Deadline


class TestDeadline:
    """Tests for Deadline."""

    @pytest.mark.asyncio
    async def test_remaining_counts_down(self) -> None:
        deadline = Deadline(1.0)
        assert 0.9 < deadline.remaining() <= 1.0
        assert not deadline.expired

    @pytest.mark.asyncio
    async def test_expires(self) -> None:
        deadline = Deadline(0.01)
        await asyncio.sleep(0.02)
        assert deadline.expired
        assert deadline.remaining() == 0.0

    @pytest.mark.asyncio
    async def test_restart_pushes_back(self) -> None:
        deadline = Deadline(0.05)
        await asyncio.sleep(0.06)
        assert deadline.expired

        deadline.restart()
        assert not deadline.expired

        deadline.restart(2.0)
        assert deadline.seconds == 2.0
        assert deadline.remaining() > 1.0

    @pytest.mark.asyncio
    async def test_earliest_ignores_missing(self) -> None:
        overall = Deadline(5.0)
        idle = Deadline(0.5)

        assert Deadline.earliest(overall, None) > 4.0
        assert Deadline.earliest(overall, idle) <= 0.5

    @pytest.mark.asyncio
    async def test_earliest_requires_a_deadline(self) -> None:
        with pytest.raises(ValueError):
            Deadline.earliest(None)

    @pytest.mark.asyncio
    async def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            Deadline(-1)
