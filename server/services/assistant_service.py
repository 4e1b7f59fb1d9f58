"""
Assistant Service

Thin pass-through to a hosted chat completion API. The assistant can:
- Answer general questions
- Turn a message like "schedule a 30 minute call with Ana tomorrow"
  into a task creation request
- Answer questions about the user's tasks
"""

import json
import re
from datetime import date
from enum import Enum
from typing import Iterable, Literal, Optional, Sequence

from fastmcp.utilities.logging import get_logger
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError

from config.settings import ServerSettings
from scheduling.models import Task, TaskPriority

FALLBACK_REPLY = "Sorry, I couldn't process that request."
UNAVAILABLE_REPLY = "Sorry, I'm having trouble connecting right now. Please try again."
NOT_CONFIGURED_REPLY = "The assistant is not configured. Set SCHEDULER_OPENAI_API_KEY to enable it."

JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

CREATE_KEYWORDS = ("create", "schedule", "add", "new task")
QUERY_KEYWORDS = ("task", "what", "show")


class MessageIntent(str, Enum):
    CREATE = "create"
    QUERY = "query"
    CHAT = "chat"


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class TaskCreationRequest(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    category: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    duration_minutes: Optional[int] = Field(default=None, gt=0)


class TaskCreationResult(BaseModel):
    task: Optional[TaskCreationRequest] = None
    response: str
    needs_more_info: bool = False


def classify_message(text: str) -> MessageIntent:
    """Route a user message by keyword: create requests first, then task queries."""
    lowered = text.lower()
    if any(keyword in lowered for keyword in CREATE_KEYWORDS):
        return MessageIntent.CREATE
    if any(keyword in lowered for keyword in QUERY_KEYWORDS):
        return MessageIntent.QUERY
    return MessageIntent.CHAT


def format_task_line(task: Task) -> str:
    when = task.due_date.isoformat() if task.due_date else "no due date"
    if task.start_time and task.effective_end():
        when += f" {task.start_time}-{task.effective_end()}"
    return f"- {task.title} ({task.priority.value}, {task.status.value}, due: {when})"


class AssistantService:
    """
    Service wrapping the chat completion client.

    API failures never propagate: they are logged and the user gets a
    short apology instead.
    """

    def __init__(self, settings: ServerSettings, client: Optional[OpenAI] = None):
        """
        Initialize Assistant Service.

        Args:
            settings: Server settings (model, key, sampling parameters)
            client: Preconfigured client; built from settings when omitted
        """
        self.logger = get_logger("AssistantService")
        self.settings = settings
        self.client = client
        if self.client is None and settings.openai_api_key:
            self.client = OpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def system_prompt(self, today: Optional[date] = None) -> str:
        today = today or date.today()
        return f"""You are a helpful task management assistant for a task scheduling app. You can help users:

1. Query their tasks (e.g., "What are my tasks for today?")
2. Create new tasks (e.g., "Schedule a task called 'buy groceries'")
3. Ask for missing information when creating tasks

Keep responses concise and friendly. If you need more information, ask one question at a time.

Current date: {today.isoformat()}"""

    def chat(self, messages: Sequence[ChatMessage], system_prompt: Optional[str] = None) -> str:
        """
        Send a conversation to the model and return its reply.

        Args:
            messages: Conversation so far, oldest first
            system_prompt: Replaces the default system prompt

        Returns:
            The reply text, or an apology if the API call failed
        """
        if not self.is_configured:
            return NOT_CONFIGURED_REPLY

        payload = [{"role": "system", "content": system_prompt or self.system_prompt()}]
        payload.extend({"role": m.role, "content": m.content} for m in messages)

        try:
            response = self.client.chat.completions.create(
                model=self.settings.assistant_model,
                messages=payload,
                max_tokens=self.settings.assistant_max_tokens,
                temperature=self.settings.assistant_temperature,
            )
        except OpenAIError as e:
            self.logger.error(f"Chat completion API error: {e}")
            return UNAVAILABLE_REPLY

        if not response.choices:
            return FALLBACK_REPLY
        return response.choices[0].message.content or FALLBACK_REPLY

    def create_task_from_message(self, user_message: str) -> TaskCreationResult:
        """
        Ask the model to extract a task from a message.

        A reply without a parsable JSON object is passed through as plain
        text with no task attached.
        """
        prompt = f"""You are a task creation assistant. Analyze the user's message and extract task information. If information is missing, ask for it.

Available task fields:
- title (required)
- description (optional)
- due_date: YYYY-MM-DD format (optional)
- category (optional)
- priority: low, medium or high (optional)
- duration_minutes: positive integer (optional)

If the message is about creating a task, respond with a JSON object like:
{{
  "task": {{"title": "task title", "description": "task description", "due_date": "{date.today().isoformat()}", "category": "work", "duration_minutes": 60}},
  "response": "I'll create that task for you!",
  "needs_more_info": false
}}

If information is missing, respond with:
{{"task": null, "response": "What due date would you like for this task?", "needs_more_info": true}}

If it's not about creating a task, respond normally without JSON."""

        reply = self.chat([ChatMessage(role="user", content=user_message)], system_prompt=prompt)
        return self.parse_task_creation_reply(reply)

    def parse_task_creation_reply(self, reply: str) -> TaskCreationResult:
        match = JSON_BLOCK.search(reply)
        if match:
            try:
                data = json.loads(match.group(0))
                if isinstance(data, dict):
                    # Older prompts used camelCase
                    if "needsMoreInfo" in data and "needs_more_info" not in data:
                        data["needs_more_info"] = data.pop("needsMoreInfo")
                    data.setdefault("response", FALLBACK_REPLY)
                    return TaskCreationResult.model_validate(data)
            except (json.JSONDecodeError, ValidationError) as e:
                self.logger.info(f"Could not parse task creation reply: {e}")

        return TaskCreationResult(task=None, response=reply, needs_more_info=False)

    def query_tasks(self, user_message: str, tasks: Iterable[Task]) -> str:
        """Answer a question about the given tasks."""
        task_list = "\n".join(format_task_line(t) for t in tasks) or "(no tasks)"
        prompt = f"""You are a task query assistant. The user is asking about their tasks. Here are their current tasks:

{task_list}

Respond helpfully about their tasks. If they ask about today's tasks, focus on tasks due today or with high priority.

Current date: {date.today().isoformat()}"""
        return self.chat([ChatMessage(role="user", content=user_message)], system_prompt=prompt)

