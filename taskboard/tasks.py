import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import or_
from sqlmodel import Session, col, select

from taskboard.errors import NotFoundError, ValidationError
from taskboard.models import Task
from taskboard.sessions import Identity

logger = logging.getLogger(__name__)

VALID_PRIORITIES = (1, 2, 3)
DEFAULT_PRIORITY = 2

_COMPLETED_VALUES = {"1": True, "true": True, "0": False, "false": False}
_PRIORITY_VALUES = {str(p): p for p in VALID_PRIORITIES}


@dataclass(frozen=True)
class TaskFilters:
    """
    Optional predicates for listing. Each one is either a recognised value or None.
    """
    completed: Optional[bool] = None
    priority: Optional[int] = None
    search: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        completed: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
    ) -> "TaskFilters":
        # Unrecognised values mean "no filter", never an error
        return cls(
            completed=_COMPLETED_VALUES.get((completed or "").strip().lower()),
            priority=_PRIORITY_VALUES.get((priority or "").strip()),
            search=search if search and search.strip() else None,
        )


def _clean_title(title: Optional[str]) -> str:
    if title is None or str(title).strip() == "":
        raise ValidationError("Title is required")
    return str(title).strip()


def _check_priority(priority: Optional[int]) -> int:
    if priority is None:
        return DEFAULT_PRIORITY
    if priority not in VALID_PRIORITIES:
        raise ValidationError("priority must be 1, 2 or 3")
    return priority


class TaskService:
    """
    CRUD over the tasks owned by one identity. Tasks of other users behave
    exactly like tasks that do not exist.
    """

    def __init__(self, db: Session, identity: Identity):
        self.db = db
        self.identity = identity

    def _get_owned(self, task_id: int) -> Task:
        task = self.db.get(Task, task_id)
        if not task or task.user_id != self.identity.user_id:
            raise NotFoundError()
        return task

    def list(self, filters: Optional[TaskFilters] = None) -> List[Task]:
        filters = filters or TaskFilters()
        query = select(Task).where(Task.user_id == self.identity.user_id)

        if filters.completed is not None:
            query = query.where(Task.completed == filters.completed)
        if filters.priority is not None:
            query = query.where(Task.priority == filters.priority)
        if filters.search:
            query = query.where(
                or_(
                    col(Task.title).icontains(filters.search, autoescape=True),
                    col(Task.description).icontains(filters.search, autoescape=True),
                )
            )

        query = query.order_by(
            col(Task.priority).asc(),
            col(Task.created_at).desc(),
            col(Task.id).desc(),
        )
        return list(self.db.exec(query).all())

    def get(self, task_id: int) -> Task:
        return self._get_owned(task_id)

    def create(
        self,
        title: Optional[str],
        description: Optional[str] = None,
        due_date: Optional[str] = None,
        priority: Optional[int] = None,
    ) -> Task:
        db_task = Task(
            user_id=self.identity.user_id,
            title=_clean_title(title),
            description=description or None,
            due_date=due_date or None,
            priority=_check_priority(priority),
        )
        self.db.add(db_task)
        self.db.commit()
        self.db.refresh(db_task)
        logger.info("Task %s created for user id %s", db_task.id, self.identity.user_id)
        return db_task

    def update(
        self,
        task_id: int,
        title: Optional[str],
        description: Optional[str],
        due_date: Optional[str],
        priority: Optional[int],
        completed: Optional[bool],
    ) -> Task:
        """
        Full replace of the mutable fields; anything omitted is cleared.
        """
        task = self._get_owned(task_id)
        task.title = _clean_title(title)
        task.description = description
        task.due_date = due_date
        task.priority = _check_priority(priority)
        task.completed = bool(completed)

        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def toggle_completed(self, task_id: int) -> Task:
        task = self._get_owned(task_id)
        task.completed = not task.completed

        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def delete(self, task_id: int) -> None:
        task = self._get_owned(task_id)
        self.db.delete(task)
        self.db.commit()
        logger.info("Task %s deleted by user id %s", task_id, self.identity.user_id)
