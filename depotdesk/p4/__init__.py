"""Version-control integration layer.

Spawns the command-line tool, parses its output into typed records, and
drives multi-step workflows such as reconcile and the stream graph.
"""

from depotdesk.p4.diff import normalize_diff
from depotdesk.p4.executor import CommandInvocation, CommandResult, ExternalToolError, P4Executor
from depotdesk.p4.mapper import bounded_map
from depotdesk.p4.reconcile import ProgressQueue, SafetyLimitExceeded
from depotdesk.p4.review import AuthenticationError, NetworkTimeout, ReviewClient
from depotdesk.p4.session import Session
from depotdesk.p4.tagged import ParseFailure, parse_json_lines, parse_ztag

__all__ = [
    "AuthenticationError",
    "CommandInvocation",
    "CommandResult",
    "ExternalToolError",
    "NetworkTimeout",
    "P4Executor",
    "ParseFailure",
    "ProgressQueue",
    "ReviewClient",
    "SafetyLimitExceeded",
    "Session",
    "bounded_map",
    "normalize_diff",
    "parse_json_lines",
    "parse_ztag",
]
