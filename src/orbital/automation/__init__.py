"""Browser automation capability used by the workflow executor."""

from orbital.automation.session import (
    AutomationSession,
    Download,
    SessionConfig,
    SessionFactory,
)

__all__ = [
    "AutomationSession",
    "Download",
    "SessionConfig",
    "SessionFactory",
]
