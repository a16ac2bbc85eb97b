"""Tests for src.core.dependency_support — morning/evening sweeps and the stop race."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.dependency_support import (
    evening_check,
    evening_keyboard,
    morning_keyboard,
    morning_motivation,
    send_evening_check,
    send_morning_motivation,
)
from src.core.sweep_report import Outcome
from src.data.models import DependencyType, SupportStatus


class TestMessages:
    def test_unknown_type_falls_back_to_smoking(self):
        assert evening_check("KNITTING") == evening_check(DependencyType.SMOKING)
        assert morning_motivation("KNITTING")  # picks from the smoking set

    def test_keyboards_carry_type_slug(self):
        assert morning_keyboard(DependencyType.SOCIAL_MEDIA) == [
            [("🤝 Обещаю сам себе", "morning_promise_social_media")]
        ]
        callbacks = [data for _, data in evening_keyboard(DependencyType.ALCOHOL)[0]]
        assert callbacks == ["evening_holding_alcohol", "evening_failed_alcohol"]


class TestMorningSweep:
    @pytest.mark.asyncio
    async def test_sends_and_counts_promise(self, support_db, notifier, now):
        support = support_db.start_support(1, DependencyType.SMOKING)

        report = await send_morning_motivation(support_db, notifier, now=now)

        assert report.outcome_for(support.id) is Outcome.SENT
        stored = support_db.get_support(support.id)
        assert stored.total_promises == 1
        assert stored.last_morning_sent == now
        args, kwargs = notifier.send_message.call_args
        assert args[0] == 1
        assert kwargs["keyboard"] == morning_keyboard(DependencyType.SMOKING)

    @pytest.mark.asyncio
    async def test_second_run_same_day_sends_nothing(self, support_db, notifier, now):
        support_db.start_support(1, DependencyType.GAMING)
        await send_morning_motivation(support_db, notifier, now=now)

        report = await send_morning_motivation(support_db, notifier, now=now + timedelta(hours=1))

        assert report.results == []
        assert notifier.send_message.call_count == 1

    @pytest.mark.asyncio
    async def test_next_day_sends_again(self, support_db, notifier, now):
        support = support_db.start_support(1, DependencyType.GAMING)
        await send_morning_motivation(support_db, notifier, now=now)

        await send_morning_motivation(support_db, notifier, now=now + timedelta(days=1))

        assert support_db.get_support(support.id).total_promises == 2

    @pytest.mark.asyncio
    async def test_stopped_between_query_and_send_is_skipped(self, support_db, notifier, now):
        support = support_db.start_support(1, DependencyType.ALCOHOL)
        real_get = support_db.get_support

        def stop_then_read(support_id):
            support_db.stop_support(support_id)
            return real_get(support_id)

        support_db.get_support = stop_then_read

        report = await send_morning_motivation(support_db, notifier, now=now)

        assert report.outcome_for(support.id) is Outcome.SKIPPED
        notifier.send_message.assert_not_called()
        stored = real_get(support.id)
        assert stored.status is SupportStatus.STOPPED
        assert stored.total_promises == 0

    @pytest.mark.asyncio
    async def test_stopped_during_delivery_is_not_counted(self, support_db, now):
        support = support_db.start_support(1, DependencyType.DRUGS)

        async def stop_while_sending(*args, **kwargs):
            support_db.stop_support(support.id)
            return True

        notifier = MagicMock()
        notifier.send_message = AsyncMock(side_effect=stop_while_sending)

        report = await send_morning_motivation(support_db, notifier, now=now)

        assert report.outcome_for(support.id) is Outcome.SENT
        assert report.results[0].detail == "stopped before bookkeeping"
        stored = support_db.get_support(support.id)
        assert stored.status is SupportStatus.STOPPED
        assert stored.total_promises == 0
        assert stored.last_morning_sent is None

    @pytest.mark.asyncio
    async def test_failed_delivery_writes_no_bookkeeping(self, support_db, now):
        support = support_db.start_support(1, DependencyType.SMOKING)
        notifier = MagicMock()
        notifier.send_message = AsyncMock(return_value=False)

        report = await send_morning_motivation(support_db, notifier, now=now)

        assert report.outcome_for(support.id) is Outcome.FAILED
        assert support_db.get_support(support.id).total_promises == 0

    @pytest.mark.asyncio
    async def test_stopped_sessions_are_not_candidates(self, support_db, notifier, now):
        support = support_db.start_support(1, DependencyType.SMOKING)
        support_db.stop_support(support.id)

        report = await send_morning_motivation(support_db, notifier, now=now)

        assert report.results == []
        notifier.send_message.assert_not_called()


class TestEveningSweep:
    @pytest.mark.asyncio
    async def test_every_active_session_asked(self, support_db, notifier):
        a = support_db.start_support(1, DependencyType.SMOKING)
        b = support_db.start_support(2, DependencyType.SOCIAL_MEDIA)
        c = support_db.start_support(3, DependencyType.ALCOHOL)
        support_db.stop_support(c.id)

        report = await send_evening_check(support_db, notifier)

        assert report.sent == 2
        assert report.outcome_for(a.id) is Outcome.SENT
        assert report.outcome_for(b.id) is Outcome.SENT
        assert report.outcome_for(c.id) is None
        texts = [call.args[1] for call in notifier.send_message.call_args_list]
        assert any("соцсетей" in t for t in texts)

    @pytest.mark.asyncio
    async def test_failure_for_one_session_continues(self, support_db):
        a = support_db.start_support(1, DependencyType.SMOKING)
        b = support_db.start_support(2, DependencyType.GAMING)
        notifier = MagicMock()
        notifier.send_message = AsyncMock(side_effect=[RuntimeError("blocked"), True])

        report = await send_evening_check(support_db, notifier)

        assert report.outcome_for(a.id) is Outcome.FAILED
        assert report.outcome_for(b.id) is Outcome.SENT
