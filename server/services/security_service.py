"""
Security Service

Provides security utilities for the scheduler tools:
- Rate limiting per user and operation type
- Prompt injection screening for assistant messages
- Audit logging
"""

import json
import re
import time
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fastmcp.utilities.logging import get_logger

DEFAULT_RATE_LIMITS = {
    'read': {'max_requests': 100, 'window_seconds': 60},
    'write': {'max_requests': 20, 'window_seconds': 60},
    'chat': {'max_requests': 10, 'window_seconds': 60},
}

INJECTION_PATTERNS = [
    r'(?i)ignore\s+(all\s+)?(previous|prior|above)\s+instructions?',
    r'(?i)(forget|disregard)\s+(all\s+)?(previous|prior)\s+instructions?',
    r'(?i)^\s*system\s*:',
    r'(?i)you\s+are\s+now\s+',
    r'(?i)new\s+system\s+prompt',
    r'(?i)(reveal|print|show)\s+(your|the)\s+(system\s+)?prompt',
    r'(?i)(delete|cancel)\s+all\s+(of\s+)?(my\s+|the\s+)?tasks',
]

SECRET_PATTERN = re.compile(
    r'(?i)(password|api[_\s]?key|secret|token|credential)\s*[:=]\s*\S+'
)

MAX_MESSAGE_LENGTH = 4000


class SecurityService:
    """
    Security service for rate limits and assistant input screening.
    """

    def __init__(self, data_dir: Path, rate_limits: Optional[Dict[str, Dict[str, int]]] = None):
        """
        Initialize security service.

        Args:
            data_dir: Directory for storing audit logs
            rate_limits: Per-operation limits, defaults to DEFAULT_RATE_LIMITS
        """
        self.logger = get_logger("SecurityService")
        self.audit_log_dir = Path(data_dir) / "audit_logs"
        self.audit_log_dir.mkdir(parents=True, exist_ok=True)
        self.rate_limits = rate_limits or DEFAULT_RATE_LIMITS
        self.rate_limit_store: Dict[str, List[float]] = defaultdict(list)

    def detect_prompt_injection(self, content: str) -> Tuple[bool, List[str]]:
        """
        Detect potential prompt injection in a user message.

        Returns:
            Tuple of (is_suspicious, matched_patterns)
        """
        if not content:
            return False, []
        matched = [p for p in INJECTION_PATTERNS if re.search(p, content, re.MULTILINE)]
        if matched:
            self.logger.warning(f"Potential prompt injection detected ({len(matched)} patterns)")
        return bool(matched), matched

    def validate_chat_message(self, user_id: str, message: str) -> Tuple[bool, Optional[str]]:
        """
        Check an assistant message before it is forwarded to the model.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not message or not message.strip():
            return False, "Message cannot be empty"
        if len(message) > MAX_MESSAGE_LENGTH:
            return False, f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"

        is_injection, patterns = self.detect_prompt_injection(message)
        if is_injection:
            self.log_audit_event(
                'chat_message_rejected',
                user_id,
                {
                    'reason': 'prompt_injection',
                    'patterns': patterns,
                    'content_preview': self.sanitize_content_for_logging(message),
                },
                severity='warning',
            )
            return False, "Message looks like an attempt to override the assistant's instructions."
        return True, None

    def check_rate_limit(self, user_id: str, operation_type: str = 'read') -> Tuple[bool, Optional[str]]:
        """
        Check and record a request against the user's sliding-window limit.

        Args:
            user_id: User identifier
            operation_type: 'read', 'write' or 'chat'; unknown types count as 'read'

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if operation_type not in self.rate_limits:
            operation_type = 'read'

        max_requests = self.rate_limits[operation_type]['max_requests']
        window_seconds = self.rate_limits[operation_type]['window_seconds']

        now = time.monotonic()
        key = f"{user_id}:{operation_type}"
        self.rate_limit_store[key] = [
            ts for ts in self.rate_limit_store[key] if now - ts < window_seconds
        ]

        if len(self.rate_limit_store[key]) >= max_requests:
            self.log_audit_event(
                'rate_limit_exceeded',
                user_id,
                {'operation_type': operation_type, 'limit': max_requests, 'window_seconds': window_seconds},
                severity='warning',
            )
            return False, (
                f"Rate limit exceeded. Maximum {max_requests} {operation_type} "
                f"operations per {window_seconds} seconds."
            )

        self.rate_limit_store[key].append(now)
        return True, None

    def log_audit_event(self, event_type: str, user_id: str, details: Dict, severity: str = 'info'):
        """
        Log an audit event to the console and to a daily JSONL file.

        Args:
            event_type: Type of event (e.g., 'rate_limit_exceeded')
            user_id: User identifier
            details: Additional event details
            severity: 'info', 'warning', 'error' or 'critical'
        """
        now = datetime.now(timezone.utc)
        log_entry = {
            'timestamp': now.isoformat(),
            'event_type': event_type,
            'user_id': user_id,
            'severity': severity,
            'details': details,
        }

        log_message = f"[AUDIT] {event_type} | user={user_id} | {details}"
        if severity in ('critical', 'error'):
            self.logger.error(log_message)
        elif severity == 'warning':
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        log_file = self.audit_log_dir / f"audit_{now.date().isoformat()}.jsonl"
        try:
            with open(log_file, 'a') as f:
                f.write(json.dumps(log_entry, default=str) + '\n')
        except OSError as e:
            self.logger.error(f"Failed to write audit log: {e}")

    def sanitize_content_for_logging(self, content: str, max_length: int = 100) -> str:
        """Redact secrets and truncate content for log output."""
        if not content:
            return ""
        sanitized = SECRET_PATTERN.sub(r'\1=***REDACTED***', content)
        if len(sanitized) > max_length:
            sanitized = sanitized[:max_length] + "..."
        return sanitized
