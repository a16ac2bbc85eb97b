"""
Ticky Assistant — Telegram Bot.

Telegram is the chat transport for the notification engine. Commands
create the records the engine schedules on (habits, tasks, one-off
reminders, dependency-support sessions), every creation is gated by the
quota ledger, and the inline buttons on engine messages land here.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
)

from src.config import settings
from src.core.quota import Feature
from src.data.models import DependencyType, Frequency, ReminderStatus

if TYPE_CHECKING:
    from src.core.scheduler import NotificationEngine
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_Handler = Callable[..., Coroutine[Any, Any, None]]


def _engine(context: ContextTypes.DEFAULT_TYPE) -> NotificationEngine:
    return context.bot_data["engine"]


# ---------------------------------------------------------------------------
# Registration decorator
# ---------------------------------------------------------------------------


def registered_only(func: _Handler) -> _Handler:
    """Decorator that asks unknown users to /start before anything else."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None:
            return
        if _engine(context).user_db.get_user(user.id) is None:
            logger.info("Command from unregistered user_id=%s", user.id)
            await update.effective_message.reply_text("Сначала отправьте /start 🙂")
            return
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

_DEPENDENCY_ALIASES: dict[str, DependencyType] = {
    "smoking": DependencyType.SMOKING,
    "курение": DependencyType.SMOKING,
    "alcohol": DependencyType.ALCOHOL,
    "алкоголь": DependencyType.ALCOHOL,
    "drugs": DependencyType.DRUGS,
    "наркотики": DependencyType.DRUGS,
    "gaming": DependencyType.GAMING,
    "игры": DependencyType.GAMING,
    "social_media": DependencyType.SOCIAL_MEDIA,
    "соцсети": DependencyType.SOCIAL_MEDIA,
}

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def _parse_habit_args(text: str) -> tuple[str, str | None, Frequency] | None:
    """'title | reminder time | weekly' → (title, reminder_time, frequency)."""
    parts = [p.strip() for p in text.split("|")]
    title = parts[0] if parts else ""
    if not title:
        return None
    reminder_time = parts[1] if len(parts) > 1 and parts[1] else None
    frequency = Frequency.DAILY
    if len(parts) > 2 and parts[2].lower() in ("weekly", "еженедельно"):
        frequency = Frequency.WEEKLY
    return title, reminder_time, frequency


def _parse_remind_args(args: list[str]) -> tuple[int, int, str] | None:
    """['HH:MM', 'message', ...] → (hour, minute, message)."""
    if len(args) < 2:
        return None
    match = _HHMM.match(args[0])
    if match is None:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute, " ".join(args[1:])


def _parse_dependency_type(raw: str) -> DependencyType | None:
    key = raw.strip().lower()
    if key in _DEPENDENCY_ALIASES:
        return _DEPENDENCY_ALIASES[key]
    try:
        return DependencyType(key.upper())
    except ValueError:
        return None


def _next_occurrence(hour: int, minute: int, tz: ZoneInfo, now: datetime | None = None) -> datetime:
    """Next wall-clock HH:MM in ``tz`` strictly after ``now``."""
    if now is None:
        now = datetime.now(tz)
    local = now.astimezone(tz)
    target = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= local:
        target += timedelta(days=1)
    return target


def _user_tz(timezone_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name or settings.TIMEZONE)
    except ZoneInfoNotFoundError:
        return ZoneInfo(settings.TIMEZONE)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Register the user and start the trial on first contact."""
    tg_user = update.effective_user
    engine = _engine(context)
    if engine.user_db.get_user(tg_user.id) is None:
        engine.user_db.add_user(tg_user.id, tg_user.first_name or "")
        ends = engine.quota.start_trial(tg_user.id)
        await update.message.reply_text(
            f"👋 Привет, {tg_user.first_name}! Я помогу с задачами, привычками и фокусом.\n\n"
            f"🎁 Пробный Premium активен до {ends:%d.%m.%Y}.\n"
            "Укажите часовой пояс: /timezone Europe/Moscow"
        )
        return
    await update.message.reply_text("С возвращением! /help — список команд.")


@registered_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "/habit <название> | <время> | weekly — новая привычка\n"
        "/task <название> — новая задача\n"
        "/remind <ЧЧ:ММ> <текст> — разовое напоминание\n"
        "/ask <вопрос> — спросить ИИ\n"
        "/support <тип> — поддержка отказа от зависимости\n"
        "/stopsupport <тип> — остановить поддержку\n"
        "/timezone <зона или город> — часовой пояс\n"
        "/reminders on|off — напоминания\n"
        "/limits — лимиты и подписка"
    )


@registered_only
async def cmd_timezone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not context.args:
        await update.message.reply_text("Пример: /timezone Europe/Moscow или /timezone Казань")
        return
    query = " ".join(context.args)
    try:
        ZoneInfo(query)
        zone, label = query, query
    except (ZoneInfoNotFoundError, ValueError):
        from src.core.collaborators import with_timeout
        from src.core.llm import lookup_timezone

        try:
            found = await with_timeout(lookup_timezone(query), "timezone lookup")
        except Exception as exc:
            logger.error("Timezone lookup for %r failed: %s", query, exc)
            found = None
        if found is None:
            await update.message.reply_text(f"Не знаю часовой пояс {query!r}.")
            return
        zone, label = found.timezone, f"{found.city} ({found.timezone})"

    _engine(context).user_db.set_timezone(update.effective_user.id, zone)
    await update.message.reply_text(f"🌍 Часовой пояс: {label}")


@registered_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    arg = (context.args[0].lower() if context.args else "")
    if arg not in ("on", "off"):
        await update.message.reply_text("Пример: /reminders on или /reminders off")
        return
    _engine(context).user_db.set_daily_reminders(update.effective_user.id, arg == "on")
    await update.message.reply_text("🔔 Напоминания включены" if arg == "on" else "🔕 Напоминания выключены")


@registered_only
async def cmd_habit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    parsed = _parse_habit_args(" ".join(context.args or []))
    if parsed is None:
        await update.message.reply_text("Пример: /habit Медитация | 07:30")
        return

    check = engine.quota.check_limit(user_id, Feature.DAILY_HABITS)
    if not check.allowed:
        await update.message.reply_text(check.message)
        return

    title, reminder_time, frequency = parsed
    habit = engine.habit_db.add_habit(user_id, title, frequency, reminder_time)
    engine.quota.increment(user_id, Feature.DAILY_HABITS)

    reply = f"🎯 Привычка «{habit.title}» создана!"
    if reminder_time and settings.HABIT_REMINDERS_ENABLED:
        if engine.registry.schedule(habit):
            reply += f"\n⏰ Напоминание: {reminder_time}"
        else:
            reply += "\n⚠️ Не удалось разобрать время напоминания."
    await update.message.reply_text(reply)


@registered_only
async def cmd_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    title = " ".join(context.args or []).strip()
    if not title:
        await update.message.reply_text("Пример: /task Купить продукты")
        return

    check = engine.quota.check_limit(user_id, Feature.DAILY_TASKS)
    if not check.allowed:
        await update.message.reply_text(check.message)
        return

    task = engine.task_db.add_task(user_id, title)
    engine.quota.increment(user_id, Feature.DAILY_TASKS)
    await update.message.reply_text(f"📝 Задача «{task.title}» добавлена!")


@registered_only
async def cmd_remind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    parsed = _parse_remind_args(context.args or [])
    if parsed is None:
        await update.message.reply_text("Пример: /remind 18:30 Позвонить маме")
        return

    check = engine.quota.check_limit(user_id, Feature.DAILY_REMINDERS)
    if not check.allowed:
        await update.message.reply_text(check.message)
        return

    hour, minute, message = parsed
    user = engine.user_db.get_user(user_id)
    when = _next_occurrence(hour, minute, _user_tz(user.timezone))
    engine.reminder_db.add_reminder(user_id, message, when)
    engine.quota.increment(user_id, Feature.DAILY_REMINDERS)
    await update.message.reply_text(f"🔔 Напомню {when:%d.%m в %H:%M}")


@registered_only
async def cmd_ask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    question = " ".join(context.args or []).strip()
    if not question:
        await update.message.reply_text("Пример: /ask Как не прокрастинировать?")
        return

    check = engine.quota.check_limit(user_id, Feature.DAILY_AI_QUERIES)
    if not check.allowed:
        await update.message.reply_text(check.message)
        return

    from src.core.collaborators import with_timeout

    generate = engine.generate
    if generate is None:
        from src.core.llm import generate_text as generate
    try:
        answer = await with_timeout(generate(question), "AI query")
    except Exception as exc:
        logger.error("AI query for user %d failed: %s", user_id, exc)
        await update.message.reply_text("Не получилось получить ответ ИИ, попробуйте позже.")
        return

    engine.quota.increment(user_id, Feature.DAILY_AI_QUERIES)
    await update.message.reply_text(answer)


@registered_only
async def cmd_support(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    dep_type = _parse_dependency_type(context.args[0]) if context.args else None
    if dep_type is None:
        await update.message.reply_text(
            "Пример: /support smoking (smoking, alcohol, drugs, gaming, social_media)"
        )
        return

    if engine.support_db.find_active(user_id, dep_type) is not None:
        await update.message.reply_text("Поддержка уже включена 💪")
        return

    check = engine.quota.check_limit(user_id, Feature.DEPENDENCIES)
    if not check.allowed:
        await update.message.reply_text(check.message)
        return

    engine.support_db.start_support(user_id, dep_type)
    await update.message.reply_text(
        "🤝 Я буду писать тебе каждое утро и вечер. Ты справишься!"
    )


@registered_only
async def cmd_stopsupport(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine = _engine(context)
    user_id = update.effective_user.id
    dep_type = _parse_dependency_type(context.args[0]) if context.args else None
    support = engine.support_db.find_active(user_id, dep_type) if dep_type else None
    if support is None:
        await update.message.reply_text("Активной поддержки такого типа нет.")
        return
    engine.support_db.stop_support(support.id)
    await update.message.reply_text("⏹ Поддержка остановлена.")


@registered_only
async def cmd_limits(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    summary = _engine(context).quota.usage_summary(update.effective_user.id)
    await update.message.reply_text(summary, parse_mode=ParseMode.MARKDOWN)


# ---------------------------------------------------------------------------
# Inline button callbacks
# ---------------------------------------------------------------------------

_HABIT_CALLBACK = re.compile(r"^(complete|cancel|skip|snooze)_habit_(\d+)(?:_(\d+))?$")


async def _handle_habit_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    match = _HABIT_CALLBACK.match(query.data or "")
    if match is None:
        return

    engine = _engine(context)
    action, habit_id = match.group(1), int(match.group(2))
    habit = engine.habit_db.get_habit(habit_id)
    if habit is None or habit.user_id != query.from_user.id:
        await query.edit_message_text("Привычка не найдена.")
        return

    if action == "complete":
        from src.adapters.telegram_notifier import build_markup

        habit = engine.habit_db.complete(habit_id)
        await query.edit_message_text(
            f"✅ «{habit.title}» выполнена! +{habit.xp_reward} XP, стрик: {habit.current_streak}",
            reply_markup=build_markup([[("↩️ Отменить", f"cancel_habit_{habit_id}")]]),
        )
    elif action == "cancel":
        habit = engine.habit_db.cancel_completion(habit_id)
        await query.edit_message_text(f"↩️ Отметка «{habit.title}» отменена.")
    elif action == "skip":
        from src.core.clock import server_now

        engine.habit_db.mark_skipped(habit_id, habit.user_id, server_now().date())
        await query.edit_message_text(f"⏭ «{habit.title}» пропущена на сегодня.")
    else:
        minutes = int(match.group(3) or 15)
        engine.registry.snooze(habit_id, minutes)
        await query.edit_message_text(f"⏰ Напомню через {minutes} мин.")


async def _handle_habit_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    habit = _engine(context).habit_db.get_habit(int(query.data.rsplit("_", 1)[1]))
    if habit is None or habit.user_id != query.from_user.id:
        await query.edit_message_text("Привычка не найдена.")
        return
    await query.message.reply_text(
        f"📊 «{habit.title}»\n"
        f"Текущий стрик: {habit.current_streak}\n"
        f"Лучший стрик: {habit.max_streak}\n"
        f"Всего выполнений: {habit.total_completions}"
    )


def _menu_text(engine: NotificationEngine, user_id: int, action: str) -> str:
    from src.data.models import TaskStatus

    if action == "my_habits":
        habits = engine.habit_db.list_for_user(user_id)
        if not habits:
            return "У вас пока нет привычек. /habit — добавить."
        return "🎯 Ваши привычки:\n" + "\n".join(
            f"• {h.title} (стрик {h.current_streak})" for h in habits
        )
    if action == "my_tasks":
        tasks = engine.task_db.list_for_user(user_id, status=TaskStatus.PENDING)
        if not tasks:
            return "Нет невыполненных задач 🎉"
        return "📝 Ваши задачи:\n" + "\n".join(f"• {t.title}" for t in tasks)
    if action == "my_progress":
        habits = engine.habit_db.list_for_user(user_id)
        tasks = engine.task_db.list_for_user(user_id)
        done = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
        best = max((h.max_streak for h in habits), default=0)
        return f"📊 Задач выполнено: {done}/{len(tasks)}\n🔥 Лучший стрик: {best}"
    return "🏠 Главное меню — /help"


async def _handle_menu_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    await query.message.reply_text(
        _menu_text(_engine(context), query.from_user.id, query.data or "")
    )


async def _handle_disable_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    _engine(context).user_db.set_daily_reminders(query.from_user.id, False)
    await query.edit_message_text("🔕 Напоминания отключены. Включить: /reminders on")


_REMINDER_CALLBACK = re.compile(r"^reminder_(done|snooze)_(?:(\d+)_)?(\d+)$")


async def _handle_reminder_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    match = _REMINDER_CALLBACK.match(query.data or "")
    if match is None:
        return

    engine = _engine(context)
    reminder = engine.reminder_db.get_reminder(int(match.group(3)))
    if reminder is None or reminder.user_id != query.from_user.id:
        await query.edit_message_text("Напоминание не найдено.")
        return

    if match.group(1) == "done":
        engine.reminder_db.set_status(reminder.id, ReminderStatus.COMPLETED)
        await query.edit_message_text("✅ Готово!")
        return

    minutes = int(match.group(2) or 15)
    from src.core.clock import server_now

    engine.reminder_db.reschedule(reminder.id, server_now() + timedelta(minutes=minutes))
    await query.edit_message_text(f"⏰ Напомню через {minutes} мин.")


_DEPENDENCY_CALLBACK = re.compile(r"^(morning_promise|evening_holding|evening_failed)_([a-z_]+)$")

_DEPENDENCY_REPLIES = {
    "morning_promise": "🤝 Обещание принято! Я верю в тебя.",
    "evening_holding": "💪 Отлично! Ещё один день позади. Горжусь тобой!",
    "evening_failed": "🫂 Ничего страшного. Завтра новый день — начнём заново.",
}

_DEPENDENCY_LABELS = {
    DependencyType.SMOKING: "🚭 Без сигарет",
    DependencyType.ALCOHOL: "🍷 Без алкоголя",
    DependencyType.DRUGS: "💊 Без веществ",
    DependencyType.GAMING: "🎮 Меньше игр",
    DependencyType.SOCIAL_MEDIA: "📱 Меньше соцсетей",
}


async def _handle_dependency_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    match = _DEPENDENCY_CALLBACK.match(query.data or "")
    if match is None:
        return
    logger.info(
        "Dependency check-in from user %d: %s (%s)",
        query.from_user.id, match.group(1), match.group(2),
    )
    reply = _DEPENDENCY_REPLIES[match.group(1)]
    dep_type = _parse_dependency_type(match.group(2))
    if dep_type is not None:
        reply = f"{_DEPENDENCY_LABELS[dep_type]}\n\n{reply}"
    await query.edit_message_text(reply)


# ---------------------------------------------------------------------------
# Application setup
# ---------------------------------------------------------------------------


def build_app(
    notifier: NotificationPort | None = None,
    scheduler: AsyncIOScheduler | None = None,
) -> Application:
    """Build the Telegram Application and wire the notification engine.

    Args:
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
        scheduler: Process-wide scheduler. Defaults to a new AsyncIOScheduler
                   in the server timezone, started with the application.
    """
    from src.core.clock import server_tz
    from src.core.scheduler import build_engine, register_jobs, restore_habit_reminders

    if scheduler is None:
        scheduler = AsyncIOScheduler(timezone=server_tz())

    async def _post_init(application: Application) -> None:
        restore_habit_reminders(application.bot_data["engine"])
        scheduler.start()
        logger.info("Notification scheduler started")

    async def _post_shutdown(application: Application) -> None:
        if scheduler.running:
            scheduler.shutdown(wait=False)

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    engine = build_engine(scheduler, notifier)
    app.bot_data["engine"] = engine
    register_jobs(scheduler, engine)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("timezone", cmd_timezone))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("habit", cmd_habit))
    app.add_handler(CommandHandler("task", cmd_task))
    app.add_handler(CommandHandler("remind", cmd_remind))
    app.add_handler(CommandHandler("ask", cmd_ask))
    app.add_handler(CommandHandler("support", cmd_support))
    app.add_handler(CommandHandler("stopsupport", cmd_stopsupport))
    app.add_handler(CommandHandler("limits", cmd_limits))

    # Buttons on engine messages
    app.add_handler(CallbackQueryHandler(_handle_habit_callback, pattern=_HABIT_CALLBACK))
    app.add_handler(CallbackQueryHandler(_handle_habit_stats, pattern=r"^habit_stats_\d+$"))
    app.add_handler(CallbackQueryHandler(
        _handle_menu_callback, pattern=r"^(my_habits|my_tasks|my_progress|back_to_menu)$",
    ))
    app.add_handler(CallbackQueryHandler(_handle_disable_reminders, pattern=r"^disable_all_reminders$"))
    app.add_handler(CallbackQueryHandler(_handle_reminder_callback, pattern=_REMINDER_CALLBACK))
    app.add_handler(CallbackQueryHandler(_handle_dependency_callback, pattern=_DEPENDENCY_CALLBACK))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Ticky Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
