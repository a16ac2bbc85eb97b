"""
Ticky Assistant — Dependency-support sweeps.

Two fixed-time jobs at server-local 09:00 and 21:00 walk every ACTIVE
support session. A session the user stops while a sweep is running must
not get a message: each row's status is re-read right before sending, and
the morning bookkeeping is a conditional update that matches nothing once
the row is STOPPED. Losing that race is the correct outcome, not an error.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import TYPE_CHECKING

from src.core.clock import server_now, start_of_day
from src.core.collaborators import deliver
from src.core.sweep_report import Outcome, SweepReport
from src.data.models import DependencyType, SupportStatus

if TYPE_CHECKING:
    from src.data.db import DependencySupportDB
    from src.data.models import DependencySupport
    from src.ports.notification_port import Keyboard, NotificationPort

logger = logging.getLogger(__name__)

_MORNING_MOTIVATIONS: dict[DependencyType, list[str]] = {
    DependencyType.SMOKING: [
        "🚭 Каждый день без сигарет - это день, когда ты становишься сильнее",
        "🌱 Твоё тело уже начинает восстанавливаться. Продолжай!",
        "💨 Каждый вдох чистого воздуха - это твоя победа",
    ],
    DependencyType.ALCOHOL: [
        "🧠 Ясность мысли и энергия - это твои награды за трезвость",
        "💪 Ты контролируешь свою жизнь, а не зависимость",
        "🌟 Каждый трезвый день приближает тебя к лучшей версии себя",
    ],
    DependencyType.DRUGS: [
        "🆓 Свобода от веществ - это свобода быть собой",
        "🧘‍♂️ Твой разум становится яснее с каждым днем",
        "🌈 Жизнь полна красок, когда ты видишь её реальной",
    ],
    DependencyType.GAMING: [
        "🎯 Реальная жизнь - это твоя главная игра",
        "⏰ Время, потраченное на развитие, никогда не теряется",
        "🌱 Каждый день без игр - шаг к новым достижениям",
    ],
    DependencyType.SOCIAL_MEDIA: [
        "📱 Реальный мир намного интереснее виртуального",
        "👥 Живое общение дает энергию, которую не даст экран",
        "🧘‍♀️ Покой ума приходит с отключением от постоянного потока информации",
    ],
}

_EVENING_CHECKS: dict[DependencyType, str] = {
    DependencyType.SMOKING: "🚭 Как дела с отказом от курения?",
    DependencyType.ALCOHOL: "🍷 Как прошел день без алкоголя?",
    DependencyType.DRUGS: "💊 Удалось ли избежать употребления?",
    DependencyType.GAMING: "🎮 Контролировал ли время за играми?",
    DependencyType.SOCIAL_MEDIA: "📱 Как дела с ограничением соцсетей?",
}


def _coerce_type(dependency_type: DependencyType | str) -> DependencyType:
    """Unknown types fall back to SMOKING."""
    try:
        return DependencyType(dependency_type)
    except ValueError:
        return DependencyType.SMOKING


def morning_motivation(dependency_type: DependencyType | str) -> str:
    return random.choice(_MORNING_MOTIVATIONS[_coerce_type(dependency_type)])


def evening_check(dependency_type: DependencyType | str) -> str:
    return _EVENING_CHECKS[_coerce_type(dependency_type)]


def morning_keyboard(dependency_type: DependencyType) -> Keyboard:
    slug = dependency_type.value.lower()
    return [[("🤝 Обещаю сам себе", f"morning_promise_{slug}")]]


def evening_keyboard(dependency_type: DependencyType) -> Keyboard:
    slug = dependency_type.value.lower()
    return [[
        ("💪 Держусь", f"evening_holding_{slug}"),
        ("😔 Сдался", f"evening_failed_{slug}"),
    ]]


def _still_active(support_db: DependencySupportDB, support: DependencySupport) -> bool:
    """Freshness re-check right before sending."""
    current = support_db.get_support(support.id)
    return current is not None and current.status is SupportStatus.ACTIVE


async def send_morning_motivation(
    support_db: DependencySupportDB,
    notifier: NotificationPort,
    now: datetime | None = None,
) -> SweepReport:
    """09:00 sweep: one motivational message per session per calendar day."""
    if now is None:
        now = server_now()

    report = SweepReport("dependency morning")
    for support in support_db.list_morning_candidates(start_of_day(now)):
        try:
            if not _still_active(support_db, support):
                logger.info(
                    "Skipping morning message for dependency %d - status is not ACTIVE",
                    support.id,
                )
                report.record(support.id, Outcome.SKIPPED, "stopped")
                continue

            text = (
                f"🌅 *Доброе утро!*\n\n{morning_motivation(support.type)}"
                "\n\n💪 Ты сможешь справиться с этим!"
            )
            if not await deliver(
                notifier, support.user_id, text, keyboard=morning_keyboard(support.type),
            ):
                report.record(support.id, Outcome.FAILED, "delivery failed")
                continue

            if support_db.record_morning_sent(support.id, now):
                report.record(support.id, Outcome.SENT)
            else:
                logger.info(
                    "Dependency %d stopped before bookkeeping, promise not counted",
                    support.id,
                )
                report.record(support.id, Outcome.SENT, "stopped before bookkeeping")
        except Exception as exc:
            logger.error(
                "Failed to send morning message to %d: %s", support.user_id, exc,
            )
            report.record(support.id, Outcome.FAILED, str(exc))

    report.log_summary()
    return report


async def send_evening_check(
    support_db: DependencySupportDB,
    notifier: NotificationPort,
) -> SweepReport:
    """21:00 sweep: a check-in question for every ACTIVE session."""
    report = SweepReport("dependency evening")
    for support in support_db.list_active():
        try:
            if not _still_active(support_db, support):
                logger.info(
                    "Skipping evening message for dependency %d - status is not ACTIVE",
                    support.id,
                )
                report.record(support.id, Outcome.SKIPPED, "stopped")
                continue

            text = (
                f"🌙 *Время подвести итоги дня*\n\n{evening_check(support.type)}"
                "\n\n❓ Как прошел день? Продержался?"
            )
            if await deliver(
                notifier, support.user_id, text, keyboard=evening_keyboard(support.type),
            ):
                report.record(support.id, Outcome.SENT)
            else:
                report.record(support.id, Outcome.FAILED, "delivery failed")
        except Exception as exc:
            logger.error(
                "Failed to send evening message to %d: %s", support.user_id, exc,
            )
            report.record(support.id, Outcome.FAILED, str(exc))

    report.log_summary()
    return report
