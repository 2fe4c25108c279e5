import threading
from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import sessionmaker
from sqlalchemy.schema import CreateTable

from errors import DuplicateKeyError, NotFound, Unauthorized, QueryError
from models import db, Priority, Task, User
from repository import (
    SqlUserRepository, SqlTaskRepository, CreateUserPayload, TaskPayload, UpdateTask,
    locked_task_query,
)

DUE = datetime(2027, 12, 12)
CREATED = datetime(2024, 1, 2, 3, 4, 5)


@pytest.fixture()
def tasks_repo(session):
    return SqlTaskRepository(session)


@pytest.fixture()
def owner(make_user):
    return make_user('lorem@ipsum.com')


@pytest.fixture()
def intruder(make_user):
    return make_user('dolor@sit.com', name='Dolor Sit')


@pytest.fixture()
def task(tasks_repo, owner):
    return tasks_repo.store(owner.id, TaskPayload(
        name='Lorem ipsum',
        priority=Priority.HIGH,
        description='Dolor et',
        due_date=DUE,
        created_at=CREATED,
    ))


class TestUserRepository:

    def test_create_and_find_user(self, session):
        repo = SqlUserRepository(session)
        user = repo.create_user(CreateUserPayload('Lorem Ipsum', 'lorem@ipsum.com', 'hash'))

        assert user.id is not None
        assert user.created_at is not None
        assert repo.check_if_email_exists('lorem@ipsum.com') is True
        assert repo.check_if_email_exists('dolor@sit.com') is False
        assert repo.get_by_email('lorem@ipsum.com').id == user.id
        assert repo.get_by_email('dolor@sit.com') is None

    def test_duplicate_email_is_rejected(self, session):
        repo = SqlUserRepository(session)
        repo.create_user(CreateUserPayload('Lorem Ipsum', 'lorem@ipsum.com', 'hash'))

        with pytest.raises(DuplicateKeyError) as exc_info:
            repo.create_user(CreateUserPayload('Lorem Ipsum', 'lorem@ipsum.com', 'hash'))

        assert str(exc_info.value).startswith('CreateUser: failed to insert a new user')
        # session is usable again after the rollback
        assert repo.check_if_email_exists('lorem@ipsum.com') is True


class TestTaskRepository:

    def test_store_then_show(self, tasks_repo, task, owner):
        shown = tasks_repo.show(task.id)

        assert shown.name == 'Lorem ipsum'
        assert shown.priority is Priority.HIGH
        assert shown.description == 'Dolor et'
        assert shown.due_date.replace(tzinfo=None) == DUE
        assert shown.created_by == owner.id

    def test_store_requires_user(self, tasks_repo):
        with pytest.raises(QueryError, match='store: failed to get user id'):
            tasks_repo.store(0, TaskPayload(name='Lorem', priority=Priority.LOW))

    def test_show_missing_task(self, tasks_repo):
        with pytest.raises(NotFound):
            tasks_repo.show(999)

    def test_index_returns_only_owned_tasks(self, tasks_repo, task, owner, intruder):
        tasks_repo.store(intruder.id, TaskPayload(name='Dolor sit', priority=Priority.LOW))
        second = tasks_repo.store(owner.id, TaskPayload(name='Amet', priority=Priority.MEDIUM))

        assert [t.id for t in tasks_repo.index(owner.id)] == [task.id, second.id]

    def test_index_without_tasks_is_empty(self, tasks_repo, owner):
        assert tasks_repo.index(owner.id) == []

    def test_is_task_owner(self, tasks_repo, task, owner, intruder):
        assert tasks_repo.is_task_owner(owner.id, task.id) is True
        assert tasks_repo.is_task_owner(intruder.id, task.id) is False
        # missing task is "not owner", not an error
        assert tasks_repo.is_task_owner(owner.id, 999) is False

    def test_is_task_owner_is_stable_across_calls(self, tasks_repo, task, owner):
        answers = {tasks_repo.is_task_owner(owner.id, task.id) for _ in range(5)}
        assert answers == {True}

    def test_delete(self, tasks_repo, task):
        tasks_repo.delete(task.id)
        with pytest.raises(NotFound):
            tasks_repo.show(task.id)


class TestTaskUpdate:

    def test_update_overwrites_every_payload_field(self, tasks_repo, task, owner):
        updated = tasks_repo.update(owner.id, UpdateTask(
            id=task.id,
            name='Updated name',
            priority=Priority.LOW,
            description='',
            due_date=None,
        ))

        assert updated.name == 'Updated name'
        assert updated.priority is Priority.LOW
        # empty values clear the stored ones
        assert updated.description == ''
        assert updated.due_date is None
        # fields outside the payload are kept
        assert updated.created_at.replace(tzinfo=None) == CREATED
        assert updated.created_by == owner.id

        stored = tasks_repo.show(task.id)
        assert stored.name == 'Updated name'
        assert stored.due_date is None

    def test_update_missing_task_fails_without_writing(self, tasks_repo, session, owner):
        with pytest.raises(NotFound):
            tasks_repo.update(owner.id, UpdateTask(id=999, name='Lorem', priority=Priority.LOW))

        assert not session().in_transaction()
        assert session.execute(select(Task)).scalars().all() == []

    def test_update_by_non_owner_is_rolled_back(self, tasks_repo, session, task, intruder):
        with pytest.raises(Unauthorized, match='user not authorized for this action'):
            tasks_repo.update(intruder.id, UpdateTask(
                id=task.id, name='Hijacked', priority=Priority.LOW,
            ))

        assert not session().in_transaction()
        stored = tasks_repo.show(task.id)
        assert stored.name == 'Lorem ipsum'
        assert stored.priority is Priority.HIGH

    def test_locked_read_renders_for_update(self):
        sql = str(locked_task_query(1).compile(dialect=postgresql.dialect()))
        assert 'FOR UPDATE' in sql


@pytest.mark.parametrize('model', [User, Task])
def test_name_columns_have_no_length_limit(model):
    ddl = str(CreateTable(model.__table__).compile(dialect=postgresql.dialect()))
    assert 'name TEXT NOT NULL' in ddl


def test_padded_task_name_is_stored_as_sent(tasks_repo, owner):
    # validation trims before measuring, the stored value is untouched
    name = 'abc' + ' ' * 70
    task = tasks_repo.store(owner.id, TaskPayload(name=name, priority=Priority.LOW))
    assert tasks_repo.show(task.id).name == name


def test_long_user_name_is_stored(session):
    repo = SqlUserRepository(session)
    user = repo.create_user(CreateUserPayload('L' * 150, 'lorem@ipsum.com', 'hash'))
    assert repo.get_by_email('lorem@ipsum.com').name == 'L' * 150
    assert user.id is not None


def test_concurrent_updates_from_owner_and_non_owner(tmp_path):
    """
    Owner and non-owner update the same task at once.

    SQLite ignores FOR UPDATE, so this only checks the ownership outcome,
    not that the two transactions were serialized. The row lock itself is
    covered by test_locked_read_renders_for_update.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tasks.db'}",
        connect_args={'check_same_thread': False},
    )
    db.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    with Session() as s:
        users = SqlUserRepository(s)
        owner = users.create_user(CreateUserPayload('Lorem Ipsum', 'lorem@ipsum.com', 'hash'))
        intruder = users.create_user(CreateUserPayload('Dolor Sit', 'dolor@sit.com', 'hash'))
        task = SqlTaskRepository(s).store(owner.id, TaskPayload(name='Original', priority=Priority.LOW))

    barrier = threading.Barrier(2)
    results = {}

    def run(label, user_id, new_name):
        with Session() as s:
            repo = SqlTaskRepository(s)
            barrier.wait()
            try:
                repo.update(user_id, UpdateTask(id=task.id, name=new_name, priority=Priority.MEDIUM))
                results[label] = 'committed'
            except Unauthorized:
                results[label] = 'unauthorized'

    threads = [
        threading.Thread(target=run, args=('owner', owner.id, 'Owner update')),
        threading.Thread(target=run, args=('intruder', intruder.id, 'Intruder update')),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert results == {'owner': 'committed', 'intruder': 'unauthorized'}

    with Session() as s:
        stored = SqlTaskRepository(s).show(task.id)
        assert stored.name == 'Owner update'
        assert stored.priority is Priority.MEDIUM

    engine.dispose()
