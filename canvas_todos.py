"""
Canvas to-do retrieval and normalization.

Raw items from the Canvas To-Do endpoint are turned into NormalizedTodo records
that carry a stable content id (CID). The CID is written into the Google Task
notes so later runs can find the task again.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

TODO_ENDPOINT = '/api/v1/users/self/todo'
PAGE_SIZE = 100

DATE_ONLY_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2}')
LINE_BREAKS = re.compile(r'[\r\n]+')

DEFAULT_TITLE = 'Canvas To-Do'
FALLBACK_CID_TITLE = 'untitled'
SOURCE_TAG = 'Canvas'


class RemoteFetchError(Exception):
    """Raised when Canvas does not return the to-do list."""

    def __init__(self, status_code: Optional[int], message: str = ''):
        self.status_code = status_code
        super().__init__(message or f"Canvas todo {status_code}")


@dataclass
class NormalizedTodo:
    """A Canvas to-do in the shape written to Google Tasks."""

    cid: str
    title: str
    due: Optional[str]  # RFC 3339, e.g. 2025-03-01T00:00:00.000Z
    notes: str


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive timestamps are taken as UTC. Returns None for anything unparseable.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def format_due(moment: datetime) -> str:
    """Format a datetime the way Google Tasks reports due dates."""
    moment = moment.astimezone(timezone.utc)
    # strftime does not zero-pad years before 1000
    return (f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
            f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
            f".{moment.microsecond // 1000:03d}Z")


def to_iso_due(due: Optional[str]) -> Optional[str]:
    """Normalize a Canvas due value to RFC 3339 in UTC.

    Date-only values (YYYY-MM-DD) become midnight UTC. Empty or invalid
    values give None; this never raises.
    """
    if not due or not isinstance(due, str):
        return None

    if DATE_ONLY_PATTERN.fullmatch(due):
        try:
            day = datetime.strptime(due, '%Y-%m-%d')
        except ValueError:
            return None
        return format_due(day.replace(tzinfo=timezone.utc))

    parsed = parse_timestamp(due)
    if parsed is None:
        return None
    return format_due(parsed)


def _identity_part(value) -> str:
    """Fold line breaks and trim, so the value fits on a single notes line."""
    if value is None:
        return ''
    return LINE_BREAKS.sub(' ', str(value)).strip()


def build_cid(todo: Dict) -> str:
    """Build the stable content id for a Canvas to-do.

    Preference order: assignment id, item URL (direct, then assignment),
    then a fallback of title and raw due value. Each part is folded onto
    one line and trimmed, so the id reads back unchanged from the notes.
    """
    assignment = todo.get('assignment') or {}

    if assignment.get('id') is not None:
        return f"A:{_identity_part(assignment['id'])}"

    url = _identity_part(todo.get('html_url')) or _identity_part(assignment.get('html_url'))
    if url:
        return f"U:{url}"

    title = (_identity_part(assignment.get('name')) or _identity_part(todo.get('title'))
             or FALLBACK_CID_TITLE)
    due = _identity_part(assignment.get('due_at')) or _identity_part(todo.get('due_at'))
    return f"FALLBACK:{title}:{due}"


def build_notes(cid: str, todo: Dict) -> str:
    """Build the notes block carrying the CID and where the item came from."""
    assignment = todo.get('assignment') or {}

    lines = [f"CID: {cid}", f"Source: {SOURCE_TAG}"]
    if todo.get('context_name'):
        lines.append(f"Course: {todo['context_name']}")

    url = assignment.get('html_url') or todo.get('html_url')
    if url:
        lines.append(f"URL: {url}")

    return '\n'.join(lines)


def normalize_todo(todo: Dict) -> NormalizedTodo:
    assignment = todo.get('assignment') or {}

    cid = build_cid(todo)
    title = assignment.get('name') or todo.get('title') or DEFAULT_TITLE

    raw_due = assignment.get('due_at')
    if raw_due is None:
        raw_due = todo.get('due_at')

    return NormalizedTodo(
        cid=cid,
        title=title,
        due=to_iso_due(raw_due),
        notes=build_notes(cid, todo),
    )


def normalize_todos(items: List[Dict]) -> List[NormalizedTodo]:
    """Normalize raw Canvas to-dos, one record per item, order kept."""
    return [normalize_todo(item) for item in items]


def filter_by_window(todos: List[NormalizedTodo], window_days: int,
                     now: Optional[datetime] = None) -> List[NormalizedTodo]:
    """Keep to-dos due between now and now + window_days, both inclusive.

    Undated to-dos are always dropped.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    end = now + timedelta(days=window_days)

    scoped = []
    for todo in todos:
        due = parse_timestamp(todo.due)
        if due is None:
            continue
        if now <= due <= end:
            scoped.append(todo)
    return scoped


def fetch_canvas_todos(base_url: str, token: str,
                       session: Optional[requests.Session] = None,
                       timeout: int = 30) -> List[Dict]:
    """Fetch the authenticated user's Canvas to-do items.

    Follows the Link header until every page is read.

    Raises:
        RemoteFetchError: Canvas answered with a non-success status or
            could not be reached
    """
    http = session or requests.Session()
    url = f"{base_url.rstrip('/')}{TODO_ENDPOINT}"
    params = {'per_page': PAGE_SIZE}
    headers = {'Authorization': f"Bearer {token}"}

    todos = []
    while url:
        try:
            response = http.get(url, headers=headers, params=params, timeout=timeout)
        except requests.RequestException as e:
            raise RemoteFetchError(None, f"Canvas todo request failed: {e}") from e

        if not response.ok:
            raise RemoteFetchError(response.status_code)

        try:
            page = response.json()
        except ValueError as e:
            raise RemoteFetchError(response.status_code, "Canvas todo returned invalid JSON") from e

        if isinstance(page, list):
            todos.extend(page)

        # The next link already carries the query string
        url = response.links.get('next', {}).get('url')
        params = None

    logger.info(f"[Canvas] fetched {len(todos)} items")
    return todos
