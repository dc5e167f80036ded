# src/tududi/cli/render.py

from __future__ import annotations

from ..intelligence.analyzer import TaskAnalysis
from ..tasks.task_models import Note, Priority, Project, Task, TaskStatus

_STATUS_MARK = {
    TaskStatus.NOT_STARTED: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.WAITING: "[?]",
    TaskStatus.DONE: "[x]",
    TaskStatus.ARCHIVED: "[-]",
}


def priority_style(task: Task) -> str:
    """Display class for a task: done -> success, medium -> warning, high -> danger, else secondary."""
    if task.status == TaskStatus.DONE:
        return "success"
    if task.priority == Priority.MEDIUM:
        return "warning"
    if task.priority == Priority.HIGH:
        return "danger"
    return "secondary"


def format_task(task: Task) -> str:
    parts = [f"{_STATUS_MARK.get(task.status, '[ ]')} #{task.id} {task.name}"]
    if task.due_date is not None:
        parts.append(f"due {task.due_date.isoformat()}")
    parts.append(f"({priority_style(task)})")
    if task.today:
        parts.append("*today*")
    if task.is_recurring:
        parts.append(f"repeats {task.recurrence_type.value}")
    if task.is_generated_instance:
        parts.append(f"<- #{task.recurring_parent_id}")
    if task.tags:
        parts.append(" ".join(f"#{t}" for t in task.tags))
    return " ".join(parts)


def format_tasks(tasks: list[Task], empty: str = "No tasks.") -> str:
    if not tasks:
        return empty
    return "\n".join(format_task(t) for t in tasks)


def format_task_details(task: Task) -> str:
    lines = [
        format_task(task),
        f"  status: {task.status.value}  priority: {task.priority.value}",
    ]
    if task.project_id is not None:
        lines.append(f"  project: #{task.project_id}")
    if task.note:
        lines.append(f"  note: {task.note}")
    if task.is_recurring:
        rule = f"  recurrence: {task.recurrence_type.value} every {task.recurrence_interval}"
        if task.recurrence_end_date:
            rule += f" until {task.recurrence_end_date.isoformat()}"
        if task.completion_based:
            rule += " (after completion)"
        lines.append(rule)
    return "\n".join(lines)


def format_project(project: Project) -> str:
    flag = "" if project.active else " (inactive)"
    return f"#{project.id} {project.name}{flag}"


def format_note(note: Note) -> str:
    tags = f" [{', '.join(note.tags)}]" if note.tags else ""
    return f"#{note.id} {note.title}{tags}"


def format_analysis(analysis: TaskAnalysis | None) -> str:
    if analysis is None or not analysis.has_suggestions:
        return "No suggestions."
    lines = ["Suggestions:"]
    if analysis.due_date is not None:
        lines.append(f"  due date: {analysis.due_date.isoformat()} (from '{analysis.due_phrase}')")
    if analysis.priority is not None:
        lines.append(f"  priority: {analysis.priority.value} (from '{analysis.priority_keyword}')")
    if analysis.is_vague and analysis.hint:
        lines.append(f"  {analysis.hint}")
    return "\n".join(lines)
