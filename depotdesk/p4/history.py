"""History queries — per-line attribution of a file."""

from __future__ import annotations

import logging

from depotdesk.models import AnnotateResult
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.parsers import parse_annotate
from depotdesk.p4.session import Session

logger = logging.getLogger(__name__)


async def annotate(session: Session, file_path: str) -> AnnotateResult:
    """Return the changelist, user and date that last touched each line."""
    try:
        output = await session.run(["annotate", "-c", "-u", file_path])
    except ExternalToolError as exc:
        return AnnotateResult(success=False, message=str(exc))

    lines = parse_annotate(output)
    logger.debug("Annotated %s: %d line(s)", file_path, len(lines))
    return AnnotateResult(success=True, lines=lines)
