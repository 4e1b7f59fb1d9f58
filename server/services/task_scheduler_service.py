"""
Task Scheduler Service

Orchestrates task scheduling for a user:
load tasks → build ScheduleIndex → search for a slot → store the new task.
Also serves the day/month calendar views and the chat assistant flow.
"""

import calendar
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Union

from fastmcp.utilities.logging import get_logger

from scheduling.models import Slot, Task, TaskPriority, TaskStatus, TimeInterval, TimeOfDay, parse_date
from scheduling.schedule_index import ScheduleIndex, build_index
from scheduling.slot_finder import find_next_available_slot, free_windows
from services.assistant_service import (
    AssistantService,
    ChatMessage,
    MessageIntent,
    classify_message,
)
from services.security_service import SecurityService
from services.task_store_service import TaskStoreService
from services.user_config_service import SchedulingPreferences, UserConfigService

MAX_HISTORY_MESSAGES = 20


class TaskSchedulerService:
    """
    Service for managing task scheduling.

    Holds no scheduling state of its own: every search rebuilds the index
    from the store, so concurrent callers only meet at the store's
    insert-time conflict check.
    """

    def __init__(
        self,
        task_store: TaskStoreService,
        user_config_service: UserConfigService,
        assistant_service: Optional[AssistantService] = None,
        security_service: Optional[SecurityService] = None
    ):
        """
        Initialize Task Scheduler Service.

        Args:
            task_store: Task persistence
            user_config_service: Per-user scheduling preferences
            assistant_service: Chat assistant (optional)
            security_service: Message screening (optional)
        """
        self.logger = get_logger("TaskSchedulerService")
        self.task_store = task_store
        self.user_config_service = user_config_service
        self.assistant_service = assistant_service
        self.security_service = security_service

        # Per-user chat transcripts
        self.conversations: Dict[str, List[ChatMessage]] = {}

    # === SLOT SEARCH ===

    def build_user_index(
        self,
        user_id: str,
        start_date: date,
        end_date: date,
        preferences: Optional[SchedulingPreferences] = None
    ) -> ScheduleIndex:
        """Index a user's tasks due between start_date and end_date (inclusive)."""
        preferences = preferences or self.user_config_service.get_preferences(user_id)
        tasks = self.task_store.list_tasks(user_id, start_date, end_date)
        return build_index(
            tasks,
            exclude_statuses=preferences.excluded_statuses,
            strict=preferences.strict_task_validation,
        )

    def suggest_slot(
        self,
        user_id: str,
        duration_minutes: int,
        reference_date: Optional[Union[date, str]] = None,
        **overrides: Any
    ) -> Optional[Slot]:
        """
        Find the next free slot for a user.

        Args:
            user_id: User identifier
            duration_minutes: Length of the task
            reference_date: First day to consider (defaults to today)
            **overrides: horizon_days, work_start_hour, work_end_hour or
                granularity_minutes to use instead of the user's preferences

        Returns:
            The earliest free slot, or None if the horizon is fully booked

        Raises:
            InvalidInputError: If the search parameters are invalid
            MalformedTaskError: If strict validation is on and a stored task is malformed
        """
        preferences = self.user_config_service.get_preferences(user_id)
        options = preferences.search_options().as_kwargs()
        options.update({k: v for k, v in overrides.items() if v is not None})

        first_day = parse_date(reference_date) if reference_date else date.today()
        last_day = first_day + timedelta(days=max(options["horizon_days"] - 1, 0))
        index = self.build_user_index(user_id, first_day, last_day, preferences)

        slot = find_next_available_slot(index, duration_minutes, first_day, **options)
        if slot:
            self.logger.info(f"Suggested slot for {user_id}: {slot}")
        else:
            self.logger.info(
                f"No {duration_minutes}-minute slot for {user_id} within {options['horizon_days']} days"
            )
        return slot

    # === TASK MANAGEMENT ===

    def add_task(
        self,
        user_id: str,
        title: str,
        duration_minutes: Optional[int] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        priority: Union[TaskPriority, str] = TaskPriority.MEDIUM,
        due_date: Optional[Union[date, str]] = None,
        start_time: Optional[Union[TimeOfDay, str]] = None,
        reference_date: Optional[Union[date, str]] = None
    ) -> Task:
        """
        Create a task, scheduling it automatically unless a start time is given.

        With start_time, the task is placed on due_date (or the reference
        date) exactly as requested. Without it, the next free slot from
        due_date (or the reference date) is used; if none exists, the task
        is stored unscheduled on that day.

        Raises:
            ValueError: If the title is empty or a field is invalid
            TaskConflictError: If the placement overlaps an existing task
        """
        if not title or not title.strip():
            raise ValueError("Task title cannot be empty")

        preferences = self.user_config_service.get_preferences(user_id)
        duration = duration_minutes or preferences.default_duration_minutes
        anchor = parse_date(due_date or reference_date or date.today())

        fields: Dict[str, Any] = {
            "title": title.strip(),
            "description": description.strip() if description and description.strip() else None,
            "category": category or None,
            "priority": priority,
            "status": TaskStatus.PENDING,
            "duration_minutes": duration,
            "due_date": anchor,
        }

        if start_time is not None:
            fields["start_time"] = start_time
            task = Task(**fields)
            fields["end_time"] = task.effective_end()
            if fields["end_time"] is None:
                raise ValueError("Task would run past midnight")
        else:
            slot = self.suggest_slot(user_id, duration, anchor)
            if slot:
                fields.update(slot.as_task_fields())

        task = self.task_store.insert_task(
            user_id, Task(**fields), excluded_statuses=preferences.excluded_statuses
        )
        self.logger.info(f"Added task: {task.title} ({task.due_date} {task.start_time or 'unscheduled'})")
        return task

    def get_tasks_for_date(self, user_id: str, day: Union[date, str]) -> List[Task]:
        """Tasks due on a given day, ordered by start time."""
        target = parse_date(day)
        return self.task_store.list_tasks(user_id, target, target)

    def get_tasks_for_month(self, user_id: str, year: int, month: int) -> Dict[date, List[Task]]:
        """
        Tasks grouped by day for a month view.

        Returns:
            Mapping of each day that has tasks to its tasks
        """
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])

        grouped: Dict[date, List[Task]] = {}
        for task in self.task_store.list_tasks(user_id, first, last):
            grouped.setdefault(task.due_date, []).append(task)
        return grouped

    def get_free_windows(self, user_id: str, day: Union[date, str]) -> List[TimeInterval]:
        """Free gaps inside the user's work window on a day."""
        target = parse_date(day)
        preferences = self.user_config_service.get_preferences(user_id)
        index = self.build_user_index(user_id, target, target, preferences)
        return free_windows(index, target, preferences.work_start_hour, preferences.work_end_hour)

    def update_task_status(self, user_id: str, task_id: str, status: Union[TaskStatus, str]) -> Task:
        preferences = self.user_config_service.get_preferences(user_id)
        return self.task_store.update_status(
            user_id, task_id, TaskStatus(status), excluded_statuses=preferences.excluded_statuses
        )

    def delete_task(self, user_id: str, task_id: str) -> Task:
        return self.task_store.delete_task(user_id, task_id)

    # === ASSISTANT ===

    def handle_chat_message(self, user_id: str, message: str, reference_date: Optional[date] = None) -> str:
        """
        Answer a chat message, creating or querying tasks as needed.

        Messages asking to create something go through the task extraction
        prompt; a fully specified task is then scheduled like add_task().
        Questions about tasks get the user's upcoming tasks as context.

        Returns:
            The assistant's reply

        Raises:
            ValueError: If the message is rejected by screening
            RuntimeError: If no assistant is configured
        """
        if self.assistant_service is None:
            raise RuntimeError("Assistant service is not available")

        if self.security_service is not None:
            is_valid, error = self.security_service.validate_chat_message(user_id, message)
            if not is_valid:
                raise ValueError(error)

        today = reference_date or date.today()
        user_message = ChatMessage(role="user", content=message)

        intent = classify_message(message)
        self.logger.info(f"Chat message from {user_id} routed as {intent.value}")

        if intent == MessageIntent.CREATE:
            result = self.assistant_service.create_task_from_message(message)
            reply = result.response
            if result.task is not None and not result.needs_more_info:
                request = result.task
                task = self.add_task(
                    user_id,
                    request.title,
                    duration_minutes=request.duration_minutes,
                    description=request.description,
                    category=request.category,
                    priority=request.priority,
                    due_date=request.due_date,
                    reference_date=today,
                )
                if task.start_time:
                    reply += f" Scheduled for {task.due_date.isoformat()} at {task.start_time}."
                else:
                    reply += f" No free slot found, so it is saved for {task.due_date.isoformat()} without a time."
        elif intent == MessageIntent.QUERY:
            tasks = self.task_store.list_tasks(user_id, start_date=today)
            reply = self.assistant_service.query_tasks(message, tasks)
        else:
            reply = self.assistant_service.chat(self.conversations.get(user_id, []) + [user_message])

        # Only completed turns enter the transcript
        history = self.conversations.setdefault(user_id, [])
        history.extend([user_message, ChatMessage(role="assistant", content=reply)])
        del history[:-MAX_HISTORY_MESSAGES]
        return reply

    def clear_conversation(self, user_id: str) -> int:
        return len(self.conversations.pop(user_id, []))
