"""
Notebook sync: browser sessions, UI driver and the sync client.
"""

from digest.notebook.sessions import SessionManager
from digest.notebook.driver import NotebookDriver, PlaywrightNotebookDriver
from digest.notebook.client import (
    NotebookClient,
    NotebookSessionRequired,
    NotebookStepError,
    SyncState,
    container_name,
)

__all__ = [
    "SessionManager",
    "NotebookDriver",
    "PlaywrightNotebookDriver",
    "NotebookClient",
    "NotebookSessionRequired",
    "NotebookStepError",
    "SyncState",
    "container_name",
]
