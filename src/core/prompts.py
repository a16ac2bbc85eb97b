"""Prompt templates and canned fallbacks for the daily AI broadcasts."""

from __future__ import annotations


def morning_prompt(first_name: str, tasks_text: str, habits_text: str) -> str:
    return (
        f"Пользователя зовут {first_name or 'друг'}. Сейчас у него утро.\n"
        f"Его невыполненные задачи: {tasks_text or 'нет задач'}.\n"
        f"Его привычки: {habits_text or 'нет привычек'}.\n\n"
        "Напиши короткое бодрое утреннее сообщение: поприветствуй по имени, "
        "предложи, с какой задачи начать день, и поддержи стрики привычек. "
        "Не больше 120 слов."
    )


def evening_prompt(
    first_name: str,
    all_tasks_text: str,
    completed_tasks_text: str,
    task_progress: float,
    all_habits_text: str,
    completed_habits_text: str,
    habit_progress: float,
) -> str:
    return (
        f"Пользователя зовут {first_name or 'друг'}. Сейчас у него вечер.\n"
        f"Все задачи: {all_tasks_text or 'нет задач'}.\n"
        f"Выполненные задачи: {completed_tasks_text or 'ни одной'}.\n"
        f"Прогресс по задачам: {task_progress:.0f}%.\n"
        f"Все привычки: {all_habits_text or 'нет привычек'}.\n"
        f"Выполненные сегодня привычки: {completed_habits_text or 'ни одной'}.\n"
        f"Прогресс по привычкам: {habit_progress:.0f}%.\n\n"
        "Подведи итоги дня: похвали за сделанное, мягко отметь несделанное "
        "и дай один совет на завтра. Не больше 150 слов."
    )


def morning_fallback(first_name: str, tasks_text: str, habits_text: str) -> str:
    greeting = f"☀️ *Доброе утро, {first_name}!*" if first_name else "☀️ *Доброе утро!*"
    return (
        f"{greeting}\n\n"
        f"📝 Задачи на сегодня: {tasks_text or 'нет задач'}\n"
        f"🎯 Привычки: {habits_text or 'нет привычек'}"
    )


def evening_fallback(task_progress: float, habit_progress: float) -> str:
    return (
        "🌙 *Итоги дня*\n\n"
        f"📝 Задачи выполнены на {task_progress:.0f}%\n"
        f"🎯 Привычки выполнены на {habit_progress:.0f}%"
    )
