"""depotdesk — version-control integration layer for a desktop depot client."""

__version__ = "0.1.0"

from depotdesk.config import Settings, configure_logging, load_settings
from depotdesk.desk import DepotDesk
from depotdesk.models import (
    Changelist,
    ClientInfo,
    DiffResult,
    FileStatus,
    OperationResult,
    ReconcileMode,
    ReconcilePhase,
    ReconcileProgress,
    ReconcileResult,
    StreamGraph,
)
from depotdesk.p4.diff import normalize_diff
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.reconcile import SafetyLimitExceeded
from depotdesk.p4.review import AuthenticationError, NetworkTimeout
from depotdesk.p4.tagged import ParseFailure

__all__ = [
    "AuthenticationError",
    "Changelist",
    "ClientInfo",
    "DepotDesk",
    "DiffResult",
    "ExternalToolError",
    "FileStatus",
    "NetworkTimeout",
    "OperationResult",
    "ParseFailure",
    "ReconcileMode",
    "ReconcilePhase",
    "ReconcileProgress",
    "ReconcileResult",
    "SafetyLimitExceeded",
    "Settings",
    "StreamGraph",
    "configure_logging",
    "load_settings",
    "normalize_diff",
]
