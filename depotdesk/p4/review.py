"""Review-service client — enrich changelists with review links, open reviews.

Credentials come from the tool's cached ticket only; nothing here ever
prompts or logs in.  Every call uses a short timeout, and lookups made
for enrichment degrade to "no reviews" on any failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import requests

from depotdesk.config import REVIEW_API_VERSION, REVIEW_URL_PROPERTY
from depotdesk.models import ReviewResult
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.session import Session
from depotdesk.p4.tagged import split_lines

logger = logging.getLogger(__name__)

_TICKET_RE = re.compile(r"^(\S+)\s+\((\S+)\)\s+(\S+)\s*$")
_REVIEW_ID_RE = re.compile(r"review\D*(\d+)", re.IGNORECASE)


class AuthenticationError(Exception):
    """No cached user or ticket is available for the review service."""


class NetworkTimeout(Exception):
    """The review service did not answer within the configured timeout."""


@dataclass(frozen=True)
class Credentials:
    user: str
    ticket: str
    host: str = ""


def parse_tickets(text: str) -> list[Credentials]:
    """Parse ``tickets`` lines: ``<host> (<user>) <ticket>``."""
    tickets: list[Credentials] = []
    for line in split_lines(text):
        match = _TICKET_RE.match(line.strip())
        if match:
            host, user, ticket = match.groups()
            tickets.append(Credentials(user=user, ticket=ticket, host=host))
    return tickets


def _host_matches(ticket_host: str, server_address: str) -> bool:
    return bool(ticket_host) and server_address.endswith(ticket_host)


async def read_cached_ticket(session: Session) -> Credentials | None:
    """Pick the cached ticket for the session's user and server, if any."""
    try:
        info = await session.info()
        tickets = parse_tickets(await session.run(["tickets"]))
    except ExternalToolError as exc:
        logger.debug("No cached tickets: %s", exc)
        return None

    mine = [t for t in tickets if t.user == info.user_name]
    for ticket in mine:
        if _host_matches(ticket.host, info.server_address):
            return ticket
    return mine[0] if mine else None


def _payload(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if not isinstance(data, dict):
        return {}
    nested = data.get("data")
    return nested if isinstance(nested, dict) else data


def _as_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _review_id(payload: dict[str, Any]) -> int | None:
    review = payload.get("review")
    if isinstance(review, list) and review:
        review = review[0]
    if isinstance(review, dict) and _as_id(review.get("id")) is not None:
        return _as_id(review["id"])
    if _as_id(payload.get("id")) is not None:
        return _as_id(payload["id"])
    for message in [payload.get("error")] + list(payload.get("messages") or []):
        if isinstance(message, str):
            match = _REVIEW_ID_RE.search(message)
            if match:
                return int(match.group(1))
    return None


class ReviewClient:
    """Thin client for the review service's REST API.

    Parameters
    ----------
    base_url:
        Service root, e.g. ``https://reviews.example.com``.
    credentials:
        Cached user and ticket used for HTTP Basic auth.
    timeout:
        Per-request timeout in seconds.
    http:
        Optional :class:`requests.Session` (injected in tests).
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials | None,
        timeout: float = 5.0,
        http: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self._http = http or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{REVIEW_API_VERSION}/{path.lstrip('/')}"

    def _auth(self) -> tuple[str, str]:
        if self.credentials is None or not self.credentials.user or not self.credentials.ticket:
            raise AuthenticationError("no cached ticket for the review service")
        return (self.credentials.user, self.credentials.ticket)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self._http.request(
                method, self._url(path), auth=self._auth(), timeout=self.timeout, **kwargs,
            )
        except requests.Timeout as exc:
            raise NetworkTimeout(f"{method} {path} timed out after {self.timeout}s") from exc

    # -- Sync API -------------------------------------------------------------

    def list_reviews(self, change_ids: Iterable[int]) -> dict[int, int]:
        """Map change number -> review id for the given changes."""
        ids = [int(c) for c in change_ids]
        if not ids:
            return {}
        response = self._send("GET", "reviews", params=[("change[]", str(c)) for c in ids])
        response.raise_for_status()

        wanted = set(ids)
        links: dict[int, int] = {}
        for review in _payload(response).get("reviews") or []:
            if not isinstance(review, dict):
                continue
            review_id = _as_id(review.get("id"))
            if review_id is None:
                continue
            for change in review.get("changes") or []:
                number = _as_id(change)
                if number in wanted:
                    links.setdefault(number, review_id)
        return links

    def create(
        self,
        change: int,
        description: str = "",
        reviewers: Iterable[str] = (),
    ) -> ReviewResult:
        """Open a review for *change*.  An existing review counts as success."""
        form: list[tuple[str, str]] = [("change", str(change))]
        if description:
            form.append(("description", description))
        form.extend(("reviewers[]", name) for name in reviewers)

        response = self._send("POST", "reviews", data=form)
        payload = _payload(response)
        review_id = _review_id(payload)

        if response.status_code == 409 and review_id is not None:
            return ReviewResult(
                success=True,
                review_id=review_id,
                message=f"Change {change} is already in review {review_id}",
            )
        if response.ok:
            logger.info("Created review %s for change %s", review_id, change)
            return ReviewResult(success=True, review_id=review_id, message="Review created")

        message = payload.get("error") or response.text[:200] or f"HTTP {response.status_code}"
        return ReviewResult(success=False, message=str(message))

    # -- Async API ------------------------------------------------------------

    async def reviews_for_changes(self, change_ids: Iterable[int]) -> dict[int, int]:
        """Enrichment lookup; any failure yields an empty mapping."""
        try:
            return await asyncio.to_thread(self.list_reviews, list(change_ids))
        except (AuthenticationError, NetworkTimeout, requests.RequestException, ValueError) as exc:
            logger.warning("Review lookup failed: %s", exc)
            return {}

    async def create_review(
        self,
        change: int,
        description: str = "",
        reviewers: Iterable[str] = (),
    ) -> ReviewResult:
        try:
            return await asyncio.to_thread(self.create, change, description, list(reviewers))
        except (AuthenticationError, NetworkTimeout, requests.RequestException, ValueError) as exc:
            return ReviewResult(success=False, message=str(exc))


async def review_url(session: Session) -> str | None:
    """Review-service URL from settings, else from the server property."""
    if session.settings.review_url:
        return session.settings.review_url
    try:
        records = await session.run_tagged(
            ["property", "-l", "-n", REVIEW_URL_PROPERTY], primary="name",
        )
    except ExternalToolError as exc:
        logger.debug("No review URL property: %s", exc)
        return None
    for record in records:
        if record.get("value"):
            return record["value"]
    return None


async def review_client_for(session: Session) -> ReviewClient | None:
    """Build a client for the session, or ``None`` when unconfigured."""
    url = await review_url(session)
    if not url:
        return None
    credentials = await read_cached_ticket(session)
    if credentials is None:
        logger.info("Review service configured but no cached ticket is available")
    return ReviewClient(url, credentials, timeout=session.settings.review_timeout)
