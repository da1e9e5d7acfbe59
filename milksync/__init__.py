"""
milksync - offline-first task sync engine

Keeps a local task and list collection in step with a Remember The Milk style
task service. Local edits are tracked per field and pushed when the network,
authorization and a timeline are available; pulls merge server state without
overwriting edits that have not been pushed yet.
"""

from .client import (
    NetworkRequests,
    PullResult,
    RemoteClient,
    RequestCategory,
)
from .config import Settings, get_settings
from .connectivity import ConnectionManager, HttpConnectionManager
from .errors import (
    ProtocolError,
    RemoteCallError,
    RemoteServiceError,
    StoreError,
    SyncError,
    TransportError,
)
from .local_store import LocalStore, LocalTokenStore
from .models import ListModel, TaskModel, sort_by_due_then_name
from .rate_limiter import RateLimiter
from .retrier import Retrier, SequenceOutcome
from .task_list_model import ListListModel, TaskListModel

__version__ = "0.1.0"
__all__ = [
    # Main classes
    "RemoteClient",
    "Retrier",
    "RateLimiter",
    "LocalStore",
    "LocalTokenStore",
    "HttpConnectionManager",
    "ConnectionManager",

    # Configuration
    "Settings",
    "get_settings",

    # Data models
    "TaskModel",
    "ListModel",
    "TaskListModel",
    "ListListModel",
    "NetworkRequests",
    "PullResult",
    "RequestCategory",
    "SequenceOutcome",
    "sort_by_due_then_name",

    # Exceptions
    "SyncError",
    "RemoteCallError",
    "TransportError",
    "ProtocolError",
    "RemoteServiceError",
    "StoreError",
]
