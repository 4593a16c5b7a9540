"""
Logging Utility for the Tutor Backend

Console logging with:
- Color-coded log levels (only when stdout is a TTY)
- One icon per engine component (retrieval, embeddings, sessions, ...)
- Section separators and key/value dumps for request tracing
"""

import logging
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    SECTION = '\033[94m'    # Bright Blue
    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """Formatter with level colors and per-component icons."""

    ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last segment of the logger name
    COMPONENT_ICONS = {
        'main': '🌐',
        'socratic_tutor': '🎓',
        'retrieval': '📚',
        'embedding_cache': '🧮',
        'knowledge_store': '🗂️',
        'guidance': '❓',
        'session_history': '💾',
        'llm_client': '🤖',
        'best_effort': '🩹',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        component = record.name.split('.')[-1]
        icon = self.COMPONENT_ICONS.get(component, self.ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        if self.use_colors:
            level_color = LEVEL_COLORS.get(record.levelname, Colors.RESET)
            reset, bold, timestamp_color = Colors.RESET, Colors.BOLD, Colors.TIMESTAMP
        else:
            level_color = reset = bold = timestamp_color = ''

        formatted = (
            f"{timestamp_color}[{timestamp}]{reset} "
            f"{icon} {level_color}{record.levelname:8s}{reset} "
            f"{bold}{record.name}{reset} | {record.getMessage()}"
        )
        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


def format_data(data: Any, indent: int = 2) -> str:
    """Render nested dicts/lists as an indented key/value dump."""
    pad = ' ' * indent
    if isinstance(data, dict):
        lines = [f"{pad}{key}: {format_data(value, indent + 2).lstrip()}" for key, value in data.items()]
        return "\n".join(lines)
    if isinstance(data, (list, tuple)):
        items: List[Any] = list(data)
        shown = items[:5]
        lines = [f"{pad}- {format_data(item, indent + 2).lstrip()}" for item in shown]
        if len(items) > len(shown):
            lines.append(f"{pad}... ({len(items)} items total)")
        return "\n".join(lines) if lines else f"{pad}[]"
    return f"{pad}{data}"


class StructuredLogger:
    """Logger wrapper that accepts an optional data dict on every call."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def _with_data(self, message: str, data: Optional[Dict[str, Any]]) -> str:
        if not data:
            return message
        return f"{message}\n{format_data(data)}"

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        separator = "=" * 80
        self.logger.info(self._with_data(f"\n{separator}\n📋 {title.upper()}\n{separator}", data))

    def subsection(self, title: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"  → {title}", data))

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(self._with_data(message, data))

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(message, data))

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(self._with_data(message, data))

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        if error is not None:
            message = f"{message} Error: {type(error).__name__}: {error}"
        self.logger.error(self._with_data(message, data), exc_info=error)

    def success(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(self._with_data(f"✅ {message}", data))

    def request(self, method: str, path: str, session_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        request_data: Dict[str, Any] = {"session_id": session_id[:20] if session_id else None}
        if data:
            request_data.update(data)
        self.logger.info(self._with_data(f"📥 REQUEST: {method} {path}", request_data))

    def response(self, status: int, path: str, duration: Optional[float] = None, data: Optional[Dict[str, Any]] = None):
        response_data: Dict[str, Any] = {
            "duration_ms": f"{duration * 1000:.2f}" if duration is not None else None,
        }
        if data:
            response_data.update(data)
        self.logger.info(self._with_data(f"📤 RESPONSE: {status} {path}", response_data))


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Install the colored console handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Provider SDK chatter
    for noisy in ('asyncio', 'httpx', 'httpcore', 'openai', 'urllib3', 'sentence_transformers'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name, logging.getLogger(name))
