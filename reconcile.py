"""
Matching normalized Canvas to-dos against the tasks already in Google Tasks.

Existing tasks are recognised only by the "CID:" line in their notes. Each
to-do gets one decision (create, update or skip); tasks are never deleted.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from canvas_todos import NormalizedTodo, parse_timestamp

logger = logging.getLogger(__name__)

CID_LINE_PATTERN = re.compile(r'^\s*CID:\s*(.+?)\s*$')
SOURCE_LINE_PATTERN = re.compile(r'^\s*Source:\s*Canvas\s*$', re.IGNORECASE)
LINE_BREAK = re.compile(r'\r?\n')

CREATE = 'create'
UPDATE = 'update'
SKIP = 'skip'


def extract_cid_from_notes(notes: Optional[str]) -> Optional[str]:
    """Return the value of the first "CID:" line in a notes string."""
    if not notes:
        return None
    for line in LINE_BREAK.split(notes):
        match = CID_LINE_PATTERN.match(line)
        if match and match.group(1).strip():
            return match.group(1)
    return None


def is_canvas_source(notes: Optional[str]) -> bool:
    """Check whether a notes string has a "Source: Canvas" line."""
    if not notes:
        return False
    return any(SOURCE_LINE_PATTERN.match(line) for line in LINE_BREAK.split(notes))


@dataclass
class CidIndex:
    """Existing Google Tasks keyed by the CID found in their notes."""

    by_cid: Dict[str, Dict] = field(default_factory=dict)
    duplicates: Dict[str, List[str]] = field(default_factory=dict)  # cid -> task ids
    unmanaged: int = 0

    def get(self, cid: str) -> Optional[Dict]:
        return self.by_cid.get(cid)

    def __len__(self):
        return len(self.by_cid)


def index_tasks_by_cid(tasks: List[Dict]) -> CidIndex:
    """Build the CID lookup for the active tasks of the target list.

    Tasks without a CID line are counted as unmanaged and left alone. When two
    tasks carry the same CID the later one wins and the collision is recorded.
    """
    index = CidIndex()

    for task in tasks:
        notes = task.get('notes')
        cid = extract_cid_from_notes(notes)

        if cid is None:
            index.unmanaged += 1
            if is_canvas_source(notes):
                logger.warning(
                    f"Task '{task.get('title', '')}' is marked as a Canvas item but has no CID line, leaving it untouched"
                )
            continue

        previous = index.by_cid.get(cid)
        if previous is not None:
            task_ids = index.duplicates.setdefault(cid, [previous.get('id')])
            task_ids.append(task.get('id'))
            logger.warning(f"Duplicate CID '{cid}' on tasks {task_ids}, using the last one")

        index.by_cid[cid] = task

    return index


def is_due_different(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two optional due timestamps by the instant they denote."""
    if not a and not b:
        return False
    if not a or not b:
        return True

    first = parse_timestamp(a)
    second = parse_timestamp(b)
    if first is None or second is None:
        return a != b
    return first != second


def task_needs_update(task: Dict, todo: NormalizedTodo) -> bool:
    """Check if an existing Google Task differs from the normalized to-do."""
    if (task.get('title') or '') != todo.title:
        logger.debug(f"    Title differs: '{task.get('title', '')}' vs '{todo.title}'")
        return True

    if is_due_different(task.get('due'), todo.due):
        logger.debug(f"    Due differs: '{task.get('due')}' vs '{todo.due}'")
        return True

    if (task.get('notes') or '') != todo.notes:
        logger.debug(f"    Notes differ for '{todo.title}'")
        return True

    return False


@dataclass
class SyncDecision:
    """What to do with one normalized to-do in this run."""

    action: str  # create, update or skip
    todo: NormalizedTodo
    task_id: Optional[str] = None

    def task_body(self) -> Dict:
        # Full overwrite; a None due clears the date in Google Tasks
        return {
            'title': self.todo.title,
            'notes': self.todo.notes,
            'due': self.todo.due,
        }


@dataclass
class SyncPlan:
    """Ordered decisions for a run plus anomalies seen in the index."""

    decisions: List[SyncDecision] = field(default_factory=list)
    duplicates: Dict[str, List[str]] = field(default_factory=dict)

    def count(self, action: str) -> int:
        return sum(1 for decision in self.decisions if decision.action == action)

    @property
    def created(self) -> int:
        return self.count(CREATE)

    @property
    def updated(self) -> int:
        return self.count(UPDATE)

    @property
    def skipped(self) -> int:
        return self.count(SKIP)


@dataclass
class SyncSummary:
    """Counters for what a run actually applied."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    window_days: Optional[int] = None
    dry_run: bool = False

    def counts(self) -> str:
        return f"created={self.created} updated={self.updated} skipped={self.skipped}"

    def format(self) -> str:
        line = f"[Sync] Completed. {self.counts()} (windowDays={self.window_days})"
        if self.dry_run:
            line = "[DRY-RUN] " + line
        return line


class MutationError(Exception):
    """Raised when creating or updating a Google Task fails mid-run."""

    def __init__(self, decision: SyncDecision, summary: SyncSummary, cause: Exception):
        self.decision = decision
        self.summary = summary
        super().__init__(
            f"Failed to {decision.action} task '{decision.todo.title}' ({decision.todo.cid}): {cause}"
        )


def reconcile(todos: List[NormalizedTodo], index: CidIndex) -> SyncPlan:
    """Decide create, update or skip for every scoped to-do."""
    plan = SyncPlan(duplicates=dict(index.duplicates))

    for todo in todos:
        task = index.get(todo.cid)
        if task is None:
            plan.decisions.append(SyncDecision(CREATE, todo))
        elif task_needs_update(task, todo):
            plan.decisions.append(SyncDecision(UPDATE, todo, task_id=task.get('id')))
        else:
            plan.decisions.append(SyncDecision(SKIP, todo, task_id=task.get('id')))

    return plan


def apply_plan(store, list_id: str, plan: SyncPlan, dry_run: bool = False,
               window_days: Optional[int] = None) -> SyncSummary:
    """Apply decisions one at a time, in order.

    Each create or update is a single call on the store, finished before the
    next starts. The first failure stops the run.

    Args:
        store: Object with create_task(list_id, body) and
            update_task(list_id, task_id, body)
        list_id: Target Google Tasks list
        plan: Decisions from reconcile()
        dry_run: Only log what would change
        window_days: Reported in the summary

    Returns:
        SyncSummary with the applied counts

    Raises:
        MutationError: A store call failed; carries the counts so far
    """
    summary = SyncSummary(window_days=window_days, dry_run=dry_run)

    for decision in plan.decisions:
        title = decision.todo.title

        if decision.action == SKIP:
            summary.skipped += 1
            logger.debug(f"Unchanged Google Task: '{title}'")
            continue

        if dry_run:
            logger.info(f"[DRY-RUN] Would {decision.action} Google Task: '{title}'")
        else:
            try:
                if decision.action == CREATE:
                    store.create_task(list_id, decision.task_body())
                else:
                    store.update_task(list_id, decision.task_id, decision.task_body())
            except Exception as e:
                raise MutationError(decision, summary, e) from e
            logger.debug(f"{decision.action.capitalize()}d Google Task: '{title}'")

        if decision.action == CREATE:
            summary.created += 1
        else:
            summary.updated += 1

    return summary
