# src/tududi/intelligence/analyzer.py

from __future__ import annotations

"""
Task-name heuristics.

analyze_task_name() turns a free-text title into a small set of suggestions:
a candidate due date, a candidate priority and a clarity hint. It runs on
every keystroke of the title field, so it only does plain pattern matching
with pre-compiled, non-nested patterns over a bounded prefix of the text.
No I/O, no state.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from ..tasks.task_models import Priority

MAX_ANALYZED_CHARS = 300

_WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_RE_ISO = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_RE_DAY_AFTER_TOMORROW = re.compile(r"\bday after tomorrow\b", re.IGNORECASE)
_RE_TOMORROW = re.compile(r"\b(?:tomorrow|tmrw)\b", re.IGNORECASE)
_RE_TODAY = re.compile(r"\b(?:today|tonight)\b", re.IGNORECASE)
_RE_IN_N = re.compile(r"\bin (\d{1,3}) (days?|weeks?)\b", re.IGNORECASE)
_RE_NEXT_PERIOD = re.compile(r"\bnext (week|month)\b", re.IGNORECASE)
_RE_END_OF_WEEK = re.compile(r"\bend of (?:the )?week\b", re.IGNORECASE)
_RE_WEEKDAY = re.compile(
    r"\b(?:(?:next|this|on) )?(" + "|".join(_WEEKDAY_NAMES) + r")\b", re.IGNORECASE
)

_RE_HIGH = re.compile(r"\b(urgent|asap|critical|important)\b|(!!)", re.IGNORECASE)
_RE_LOW = re.compile(r"\b(someday|whenever|low priority|maybe)\b", re.IGNORECASE)

_RE_WORD = re.compile(r"[A-Za-z0-9']+")

ACTION_VERBS = frozenset(
    {
        "ask", "book", "buy", "call", "cancel", "check", "clean", "contact", "create",
        "deploy", "draft", "email", "file", "finish", "fix", "follow", "install", "learn",
        "make", "meet", "order", "organize", "pay", "pick", "plan", "practice", "prepare",
        "read", "renew", "reply", "research", "review", "schedule", "send", "set", "submit",
        "test", "update", "visit", "write",
    }
)


@dataclass(slots=True, frozen=True)
class TaskAnalysis:
    due_date: date | None = None
    due_phrase: str | None = None
    priority: Priority | None = None
    priority_keyword: str | None = None
    is_vague: bool = False
    hint: str | None = None

    @property
    def has_suggestions(self) -> bool:
        return self.due_date is not None or self.priority is not None or self.is_vague


def _detect_due(text: str, today: date) -> tuple[date, str] | None:
    m = _RE_ISO.search(text)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3))), m.group(0)
        except ValueError:
            pass

    m = _RE_DAY_AFTER_TOMORROW.search(text)
    if m:
        return today + timedelta(days=2), m.group(0)

    m = _RE_TOMORROW.search(text)
    if m:
        return today + timedelta(days=1), m.group(0)

    m = _RE_TODAY.search(text)
    if m:
        return today, m.group(0)

    m = _RE_IN_N.search(text)
    if m:
        n = int(m.group(1))
        days = n * 7 if m.group(2).lower().startswith("week") else n
        return today + timedelta(days=days), m.group(0)

    m = _RE_NEXT_PERIOD.search(text)
    if m:
        if m.group(1).lower() == "week":
            return today + timedelta(days=7), m.group(0)
        return today + relativedelta(months=1), m.group(0)

    m = _RE_END_OF_WEEK.search(text)
    if m:
        # Coming Friday; a week later when today is already Friday or later.
        delta = (4 - today.weekday()) % 7 or 7
        return today + timedelta(days=delta), m.group(0)

    m = _RE_WEEKDAY.search(text)
    if m:
        target = _WEEKDAY_NAMES.index(m.group(1).lower())
        delta = (target - today.weekday()) % 7 or 7
        return today + timedelta(days=delta), m.group(0)

    return None


def _detect_priority(text: str) -> tuple[Priority, str] | None:
    m = _RE_HIGH.search(text)
    if m:
        return Priority.HIGH, m.group(0)
    m = _RE_LOW.search(text)
    if m:
        return Priority.LOW, m.group(0)
    return None


def analyze_task_name(name: str, *, today: date | None = None) -> TaskAnalysis:
    """Suggestions for a task title. Deterministic for a fixed `today`."""
    text = (name or "")[:MAX_ANALYZED_CHARS].strip()
    if not text:
        return TaskAnalysis()

    today = today or date.today()

    due = _detect_due(text, today)
    prio = _detect_priority(text)

    words = _RE_WORD.findall(text)
    is_vague = bool(words) and len(words) < 3 and words[0].lower() not in ACTION_VERBS
    hint = None
    if is_vague:
        hint = "Make it actionable: start with a verb and say what 'done' looks like (e.g. 'Call the dentist')."

    return TaskAnalysis(
        due_date=due[0] if due else None,
        due_phrase=due[1] if due else None,
        priority=prio[0] if prio else None,
        priority_keyword=prio[1] if prio else None,
        is_vague=is_vague,
        hint=hint,
    )
