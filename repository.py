"""
Repository layer

所有 SQL 都在這裡執行,交易的開始與結束也由這裡決定。
低階的 driver 錯誤會包成帶有操作名稱的 QueryError 往上丟。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import QueryError, DuplicateKeyError, NotFound, Unauthorized
from models import Task, User, Priority, utcnow
import logging

logger = logging.getLogger(__name__)


# ============================================
# Payloads
# ============================================

@dataclass
class CreateUserPayload:
    name: str
    email: str
    password_hash: str


@dataclass
class TaskPayload:
    name: str
    priority: Priority
    description: str = ''
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class UpdateTask:
    id: int
    name: str
    priority: Priority
    description: str = ''
    due_date: Optional[datetime] = None


# ============================================
# Interfaces
# ============================================

class UserRepository(ABC):

    @abstractmethod
    def create_user(self, payload: CreateUserPayload) -> User: ...

    @abstractmethod
    def check_if_email_exists(self, email: str) -> bool: ...

    @abstractmethod
    def get_by_email(self, email: str) -> Optional[User]: ...


class TaskRepository(ABC):

    @abstractmethod
    def store(self, user_id: int, payload: TaskPayload) -> Task: ...

    @abstractmethod
    def update(self, user_id: int, payload: UpdateTask) -> Task: ...

    @abstractmethod
    def show(self, task_id: int) -> Task: ...

    @abstractmethod
    def index(self, user_id: int) -> List[Task]: ...

    @abstractmethod
    def delete(self, task_id: int) -> None: ...

    @abstractmethod
    def is_task_owner(self, user_id: int, task_id: int) -> bool: ...


# ============================================
# SQLAlchemy 實作
# ============================================

class SqlUserRepository(UserRepository):

    def __init__(self, session):
        self.session = session

    def create_user(self, payload):
        user = User(
            name=payload.name,
            email=payload.email,
            password_hash=payload.password_hash,
            created_at=utcnow(),
        )
        try:
            self.session.add(user)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateKeyError(f"CreateUser: failed to insert a new user: {e.orig}") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"CreateUser: failed to insert a new user: {e}") from e
        return user

    def check_if_email_exists(self, email):
        q = select(exists().where(User.email == email))
        try:
            return bool(self.session.execute(q).scalar())
        except SQLAlchemyError as e:
            raise QueryError(f"CheckIfEmailExists: failed to execute query: {e}") from e

    def get_by_email(self, email):
        q = select(User).where(User.email == email)
        try:
            return self.session.execute(q).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise QueryError(f"GetUserData: failed to execute query: {e}") from e


def locked_task_query(task_id):
    """SELECT ... FOR UPDATE,並覆蓋 identity map 裡可能過期的物件"""
    return (
        select(Task)
        .where(Task.id == task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class SqlTaskRepository(TaskRepository):

    def __init__(self, session):
        self.session = session

    def store(self, user_id, payload):
        if not user_id:
            raise QueryError("store: failed to get user id")

        task = Task(
            name=payload.name,
            priority=payload.priority,
            description=payload.description,
            due_date=payload.due_date,
            created_at=payload.created_at or utcnow(),
            created_by=user_id,
        )
        try:
            self.session.add(task)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"store: failed to insert a new task: {e}") from e
        return task

    def update(self, user_id, payload):
        """
        交易內的 read-modify-write

        1. 用 row lock 讀出 task,同一筆 task 的更新會排隊
        2. 找不到就直接失敗,不做任何寫入
        3. payload 的欄位全部覆蓋 (空值也會清掉舊值),created_at 保留
        4. 呼叫者不是 created_by 就 rollback 釋放 lock
        5. 同一個交易內寫入後 commit
        6. 回傳合併後的資料,不重新讀取
        """
        try:
            task = self.session.execute(locked_task_query(payload.id)).scalar_one_or_none()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"update: failed to get task from db: {e}") from e

        if task is None:
            self.session.rollback()
            raise NotFound(f"update: task {payload.id} not found")

        task.name = payload.name
        task.priority = payload.priority
        task.description = payload.description
        task.due_date = payload.due_date

        owner_id = task.created_by
        if owner_id != user_id:
            # rollback 會丟掉上面的變更並釋放 lock
            self.session.rollback()
            logger.warning(f"User {user_id} tried to update task {payload.id} owned by {owner_id}")
            raise Unauthorized("update: user not authorized for this action")

        try:
            self.session.flush()
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"update: failed to execute update query: {e}") from e

        return task

    def show(self, task_id):
        q = select(Task).where(Task.id == task_id)
        try:
            task = self.session.execute(q).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise QueryError(f"show: failed to execute query: {e}") from e

        if task is None:
            raise NotFound(f"show: task {task_id} not found")
        return task

    def index(self, user_id):
        q = select(Task).where(Task.created_by == user_id).order_by(Task.id)
        try:
            return list(self.session.execute(q).scalars())
        except SQLAlchemyError as e:
            raise QueryError(f"index: failed to execute query: {e}") from e

    def delete(self, task_id):
        try:
            self.session.execute(delete(Task).where(Task.id == task_id))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise QueryError(f"delete: failed to execute query: {e}") from e

    def is_task_owner(self, user_id, task_id):
        # 找不到 task 視為不是 owner
        q = select(exists().where(Task.id == task_id, Task.created_by == user_id))
        try:
            return bool(self.session.execute(q).scalar())
        except SQLAlchemyError as e:
            raise QueryError(f"isTaskOwner: failed to execute query: {e}") from e


@dataclass
class Repositories:
    users: UserRepository
    tasks: TaskRepository


def new_repositories(session):
    return Repositories(
        users=SqlUserRepository(session),
        tasks=SqlTaskRepository(session),
    )
