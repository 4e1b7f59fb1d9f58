"""
Task Scheduler MCP Server

MCP server that exposes task scheduling tools:
creating tasks in the next free slot, slot suggestions, day/month views,
free time, preferences, and a chat assistant that can create or query tasks.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
import re
import sys
from typing import List, Optional

from fastmcp import FastMCP, Context
from fastmcp.utilities.logging import get_logger
from starlette.requests import Request
from starlette.responses import JSONResponse

# Add the server directory to Python path
sys.path.insert(0, str(Path(__file__).parent))

from config.settings import ServerSettings, get_settings
from scheduling.errors import SchedulingError
from scheduling.models import Task, TaskStatus, parse_date
from services.assistant_service import AssistantService, format_task_line
from services.security_service import SecurityService
from services.task_scheduler_service import TaskSchedulerService
from services.task_store_service import TaskConflictError, TaskStoreService
from services.user_config_service import UserConfigService

logger = get_logger(__name__)

TOOL_NAMES = [
    "add_task",
    "find_next_available_slot",
    "get_tasks_for_date",
    "get_tasks_for_month",
    "get_free_time_slots",
    "update_task_status",
    "delete_task",
    "get_scheduling_preferences",
    "set_scheduling_preferences",
    "chat_with_assistant",
]

# === REQUEST HELPERS ===

def sanitize_user_id(user_id: str) -> str:
    """
    Sanitize user ID to prevent path traversal and injection attacks.

    Args:
        user_id: Raw user ID from request

    Returns:
        Sanitized user ID safe for use in file paths

    Raises:
        ValueError: If user_id contains dangerous characters
    """
    if not user_id:
        raise ValueError("User ID cannot be empty")

    # Remove any path traversal attempts
    user_id = user_id.replace('..', '').replace('/', '').replace('\\', '')

    # Only allow alphanumeric, hyphens, underscores, and dots
    if not re.match(r'^[a-zA-Z0-9._-]+$', user_id):
        raise ValueError(f"Invalid user ID format: {user_id}")

    if len(user_id) > 100:
        raise ValueError("User ID too long")

    return user_id


def get_user_id(ctx: Context) -> str:
    """
    Extract user ID from request context.

    Looks at the x-user-id header, then request metadata, and falls back
    to 'default' for local use. Does NOT sanitize; see resolve_user_id().
    """
    request_context = getattr(ctx, 'request_context', None) if ctx else None
    if request_context:
        headers = getattr(request_context, 'headers', None) or {}
        user_id = headers.get('x-user-id') or headers.get('X-User-ID') or headers.get('user-id')
        if user_id:
            logger.debug(f"Extracted user_id from headers: {user_id}")
            return user_id

        metadata = getattr(request_context, 'metadata', None) or {}
        if 'user_id' in metadata:
            logger.debug(f"Extracted user_id from metadata: {metadata['user_id']}")
            return metadata['user_id']

    logger.debug("Using default user_id")
    return 'default'


def resolve_user_id(ctx: Context) -> str:
    """
    Raises:
        ValueError: If the user ID is invalid
    """
    return sanitize_user_id(get_user_id(ctx))


def validate_date_param(value: str) -> date:
    """
    Parse a YYYY-MM-DD tool argument and keep it within a year of today.

    Raises:
        ValueError: If the date is malformed or too far away
    """
    try:
        parsed = parse_date(value)
    except ValueError:
        raise ValueError(f"Date must be in YYYY-MM-DD format: {value}")
    if abs((parsed - date.today()).days) > 365:
        raise ValueError(f"Date must be within 1 year: {value}")
    return parsed


def format_task(task: Task) -> str:
    return f"{format_task_line(task)} [id: {task.id}]"


def format_tasks(tasks: List[Task]) -> str:
    if not tasks:
        return "No tasks."
    return "\n".join(format_task(t) for t in tasks)


def _check_rate_limit(ctx: Context, user_id: str, operation_type: str) -> Optional[str]:
    security_service = ctx.request_context.lifespan_context.security_service
    is_allowed, error = security_service.check_rate_limit(user_id, operation_type)
    return None if is_allowed else f"Error: {error}"


# === APPLICATION CONTEXT ===

@dataclass
class AppContext:
    """Application context with all services."""
    task_scheduler_service: TaskSchedulerService
    task_store: TaskStoreService
    user_config_service: UserConfigService
    assistant_service: AssistantService
    security_service: SecurityService
    settings: ServerSettings


def create_app_context(settings: ServerSettings) -> AppContext:
    """Wire up all services from settings."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    task_store = TaskStoreService(excluded_statuses=settings.excluded_statuses)
    user_config_service = UserConfigService(data_dir=settings.data_dir, settings=settings)
    assistant_service = AssistantService(settings=settings)
    security_service = SecurityService(data_dir=settings.data_dir)

    task_scheduler_service = TaskSchedulerService(
        task_store=task_store,
        user_config_service=user_config_service,
        assistant_service=assistant_service,
        security_service=security_service
    )

    return AppContext(
        task_scheduler_service=task_scheduler_service,
        task_store=task_store,
        user_config_service=user_config_service,
        assistant_service=assistant_service,
        security_service=security_service,
        settings=settings
    )


@asynccontextmanager
async def app_lifespan(mcp: FastMCP):
    """Initialize all services for the task scheduler."""
    try:
        logger.info("Initializing Task Scheduler MCP Server...")
        app_context = create_app_context(get_settings())
        if not app_context.assistant_service.is_configured:
            logger.warning("No chat completion API key configured; assistant replies are disabled")
        logger.info("Task Scheduler MCP Server initialized successfully")
        yield app_context
    except Exception as e:
        logger.error(f"Error during app lifespan: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down Task Scheduler MCP Server")


# === MCP SERVER ===

mcp = FastMCP(
    name="task-scheduler-server",
    instructions="""You are a Task Scheduling Assistant.

Help users create tasks and place them in their calendar. Tasks are placed
in the earliest free slot within the user's working hours unless the user
gives an explicit start time.

**AVAILABLE TOOLS - USE ONLY THESE TOOLS:**
- add_task(title, duration_minutes, ...) - Create a task in the next free slot
- find_next_available_slot(duration_minutes, reference_date) - Suggest a slot without creating a task
- get_tasks_for_date(date) - Day view (YYYY-MM-DD)
- get_tasks_for_month(year, month) - Month view
- get_free_time_slots(date) - Free gaps in the working hours of a day
- update_task_status(task_id, status) - pending, in_progress, completed or cancelled
- delete_task(task_id) - Remove a task
- get_scheduling_preferences() / set_scheduling_preferences(...) - Working hours and search settings
- chat_with_assistant(message) - Free-form chat that can create or query tasks

**DO NOT INVENT OR HALLUCINATE TOOL NAMES. ONLY USE THE TOOLS LISTED ABOVE.**""",
    lifespan=app_lifespan
)

# === TOOLS ===

@mcp.tool()
async def add_task(
    title: str,
    duration_minutes: int = None,
    description: str = None,
    category: str = None,
    priority: str = "medium",
    due_date: str = None,
    start_time: str = None,
    ctx: Context = None
) -> str:
    """
    Create a task. Without start_time it is placed in the next free slot.

    Args:
        title: Name of the task
        duration_minutes: Length of the task (defaults to the user's preference)
        description: Optional details
        category: Optional category (e.g., work, personal)
        priority: One of: low, medium, high
        due_date: Day to schedule from (YYYY-MM-DD), defaults to today
        start_time: Explicit start time (HH:MM); skips the slot search
    """
    logger.info(f"TOOL CALLED: add_task(title={title}, duration_minutes={duration_minutes}, due_date={due_date}, start_time={start_time})")

    if not title or not title.strip():
        return "Error: Task title cannot be empty."
    if len(title) > 500:
        return "Error: Task title too long (max 500 characters)."
    if priority not in ('low', 'medium', 'high'):
        return "Error: Priority must be one of: low, medium, high"
    if duration_minutes is not None and (duration_minutes <= 0 or duration_minutes > 24 * 60):
        return "Error: duration_minutes must be between 1 and 1440."

    try:
        user_id = resolve_user_id(ctx)
        parsed_due = validate_date_param(due_date) if due_date else None
    except ValueError as e:
        logger.error(f"Invalid add_task request: {e}")
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'write')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        task = service.add_task(
            user_id,
            title,
            duration_minutes=duration_minutes,
            description=description,
            category=category,
            priority=priority,
            due_date=parsed_due,
            start_time=start_time,
        )
    except TaskConflictError as e:
        logger.warning(f"add_task conflict: {e}")
        return f"Error: {e}"
    except ValueError as e:
        logger.error(f"add_task failed: {e}")
        return f"Error: {e}"

    if task.start_time:
        result = f"Added: {task.title} on {task.due_date.isoformat()} {task.start_time}-{task.end_time} [id: {task.id}]"
    else:
        result = f"Added: {task.title} for {task.due_date.isoformat()} (no free slot found, unscheduled) [id: {task.id}]"
    logger.info(f"add_task result: {result}")
    return result


@mcp.tool()
async def find_next_available_slot(
    duration_minutes: int,
    reference_date: str = None,
    horizon_days: int = None,
    work_start_hour: int = None,
    work_end_hour: int = None,
    granularity_minutes: int = None,
    ctx: Context = None
) -> str:
    """
    Suggest the earliest free slot without creating a task.

    Unset search parameters fall back to the user's preferences.

    Args:
        duration_minutes: Length of the slot
        reference_date: First day to search (YYYY-MM-DD), defaults to today
        horizon_days: Number of days to search
        work_start_hour: First hour a slot may start (0-23)
        work_end_hour: Hour by which a slot must end (1-24)
        granularity_minutes: Step between candidate start times
    """
    logger.info(f"TOOL CALLED: find_next_available_slot(duration_minutes={duration_minutes}, reference_date={reference_date})")

    try:
        user_id = resolve_user_id(ctx)
        first_day = validate_date_param(reference_date) if reference_date else date.today()
    except ValueError as e:
        logger.error(f"Invalid slot request: {e}")
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'read')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        slot = service.suggest_slot(
            user_id,
            duration_minutes,
            first_day,
            horizon_days=horizon_days,
            work_start_hour=work_start_hour,
            work_end_hour=work_end_hour,
            granularity_minutes=granularity_minutes,
        )
    except SchedulingError as e:
        logger.error(f"Slot search failed: {e}")
        return f"Error: {e}"

    if slot is None:
        return "No available slot found within the search horizon."
    return f"Next available slot: {slot.date.isoformat()} {slot.start_time}-{slot.end_time}"


@mcp.tool()
async def get_tasks_for_date(
    date: str,
    ctx: Context = None
) -> str:
    """
    Get all tasks for a date, ordered by start time.

    Args:
        date: Date in YYYY-MM-DD format
    """
    logger.info(f"TOOL CALLED: get_tasks_for_date(date={date})")
    try:
        user_id = resolve_user_id(ctx)
        target = validate_date_param(date)
    except ValueError as e:
        logger.error(f"Invalid get_tasks_for_date request: {e}")
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'read')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    result = f"Tasks for {target.isoformat()}:\n{format_tasks(service.get_tasks_for_date(user_id, target))}"
    logger.info(f"get_tasks_for_date result: {result[:200]}...")
    return result


@mcp.tool()
async def get_tasks_for_month(
    year: int,
    month: int,
    ctx: Context = None
) -> str:
    """
    Get tasks for a month, grouped by day.

    Args:
        year: Four digit year
        month: Month number (1-12)
    """
    logger.info(f"TOOL CALLED: get_tasks_for_month(year={year}, month={month})")
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'read')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        grouped = service.get_tasks_for_month(user_id, year, month)
    except ValueError as e:
        return f"Error: {e}"

    if not grouped:
        return f"No tasks in {year}-{month:02d}."
    sections = [f"{day.isoformat()}:\n{format_tasks(tasks)}" for day, tasks in sorted(grouped.items())]
    return "\n\n".join(sections)


@mcp.tool()
async def get_free_time_slots(
    date: str,
    ctx: Context = None
) -> str:
    """
    Get free time within the user's working hours for a date.

    Args:
        date: Date in YYYY-MM-DD format
    """
    logger.info(f"TOOL CALLED: get_free_time_slots(date={date})")
    try:
        user_id = resolve_user_id(ctx)
        target = validate_date_param(date)
    except ValueError as e:
        logger.error(f"Invalid get_free_time_slots request: {e}")
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'read')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        windows = service.get_free_windows(user_id, target)
    except SchedulingError as e:
        return f"Error: {e}"

    if not windows:
        return f"No free time on {target.isoformat()}."
    lines = [f"- {w.start}-{w.end} ({w.duration_minutes} min)" for w in windows]
    return f"Free time on {target.isoformat()}:\n" + "\n".join(lines)


@mcp.tool()
async def update_task_status(
    task_id: str,
    status: str,
    ctx: Context = None
) -> str:
    """
    Change a task's status.

    Args:
        task_id: Task identifier
        status: One of: pending, in_progress, completed, cancelled
    """
    valid_statuses = [s.value for s in TaskStatus]
    if status not in valid_statuses:
        return f"Error: Status must be one of: {', '.join(valid_statuses)}"
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'write')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        task = service.update_task_status(user_id, task_id, status)
    except KeyError:
        return f"Error: Task not found: {task_id}"
    except TaskConflictError as e:
        logger.warning(f"update_task_status conflict: {e}")
        return f"Error: {e}"
    return f"Updated: {format_task(task)}"


@mcp.tool()
async def delete_task(
    task_id: str,
    ctx: Context = None
) -> str:
    """
    Delete a task.

    Args:
        task_id: Task identifier
    """
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'write')
    if limited:
        return limited

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        task = service.delete_task(user_id, task_id)
    except KeyError:
        return f"Error: Task not found: {task_id}"
    return f"Deleted: {task.title}"


@mcp.tool()
async def get_scheduling_preferences(
    ctx: Context = None
) -> str:
    """
    Get the user's working hours and slot search settings.
    """
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    config_service = ctx.request_context.lifespan_context.user_config_service
    preferences = config_service.get_preferences(user_id)
    return f"Scheduling preferences: {preferences.model_dump_json()}"


@mcp.tool()
async def set_scheduling_preferences(
    work_start_hour: int = None,
    work_end_hour: int = None,
    horizon_days: int = None,
    granularity_minutes: int = None,
    default_duration_minutes: int = None,
    excluded_statuses: List[str] = None,
    strict_task_validation: bool = None,
    ctx: Context = None
) -> str:
    """
    Update the user's scheduling preferences. Omitted fields are unchanged.

    Args:
        work_start_hour: First hour tasks may start (0-23)
        work_end_hour: Hour by which tasks must end (1-24)
        horizon_days: Days to search for a free slot
        granularity_minutes: Step between candidate start times
        default_duration_minutes: Duration used when none is given
        excluded_statuses: Statuses whose tasks do not block time (e.g., ["cancelled"])
        strict_task_validation: Fail searches on malformed tasks instead of ignoring them
    """
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'write')
    if limited:
        return limited

    config_service = ctx.request_context.lifespan_context.user_config_service
    try:
        preferences = config_service.set_preferences(
            user_id,
            work_start_hour=work_start_hour,
            work_end_hour=work_end_hour,
            horizon_days=horizon_days,
            granularity_minutes=granularity_minutes,
            default_duration_minutes=default_duration_minutes,
            excluded_statuses=excluded_statuses,
            strict_task_validation=strict_task_validation,
        )
    except ValueError as e:
        logger.error(f"Invalid preferences for {user_id}: {e}")
        return f"Error: {e}"
    return f"Scheduling preferences updated: {preferences.model_dump_json()}"


@mcp.tool()
async def chat_with_assistant(
    message: str,
    ctx: Context = None
) -> str:
    """
    Talk to the task assistant. It can create tasks ("schedule a 30 minute
    review tomorrow") or answer questions about existing ones.

    Args:
        message: The user's message
    """
    try:
        user_id = resolve_user_id(ctx)
    except ValueError as e:
        return f"Error: {e}"

    limited = _check_rate_limit(ctx, user_id, 'chat')
    if limited:
        return limited

    security_service = ctx.request_context.lifespan_context.security_service
    logger.info(f"TOOL CALLED: chat_with_assistant(message={security_service.sanitize_content_for_logging(message)})")

    service = ctx.request_context.lifespan_context.task_scheduler_service
    try:
        return service.handle_chat_message(user_id, message)
    except (RuntimeError, ValueError) as e:
        logger.error(f"chat_with_assistant failed: {e}")
        return f"Error: {e}"


# === HTTP ROUTES ===

@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request):
    """
    Health check endpoint for monitoring and connection validation.
    """
    return JSONResponse({
        "status": "healthy",
        "service": "task-scheduler-mcp-server",
        "version": "1.0.0",
        "mcp_endpoint": "/mcp",
        "timestamp": datetime.now(timezone.utc).isoformat()
    })


@mcp.custom_route("/tools", methods=["GET"])
async def list_tools(request: Request):
    """
    List available MCP tools.
    Tools are called over MCP at /mcp, not as REST endpoints.
    """
    return JSONResponse({
        "tools": TOOL_NAMES,
        "count": len(TOOL_NAMES),
        "note": "Tools are accessed via MCP protocol at /mcp, not as REST endpoints",
        "mcp_endpoint": "/mcp",
        "timestamp": datetime.now(timezone.utc).isoformat()
    })


# === SERVER ENTRY POINT ===

if __name__ == "__main__":
    settings = get_settings()
    logger.info("=" * 60)
    logger.info("Starting Task Scheduler MCP Server")
    logger.info("=" * 60)
    logger.info(f"MCP endpoint available at: http://{settings.host}:{settings.port}/mcp")
    logger.info("Health check: GET /health")
    logger.info("Tools list: GET /tools")
    logger.info("=" * 60)

    try:
        mcp.run(transport="streamable-http", host=settings.host, port=settings.port)
    except Exception as e:
        logger.error(f"Fatal error starting MCP server: {e}", exc_info=True)
        raise
