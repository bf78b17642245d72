"""Durable priority queue and snapshot store over a key/set/list key space."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol, TypeVar

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from borg_coordinator.coordinator.contracts import (
    decode_instance,
    decode_task,
    encode_instance,
    encode_task,
)
from borg_coordinator.coordinator.errors import PersistenceError
from borg_coordinator.coordinator.models import (
    PRIORITY_DEQUEUE_ORDER,
    Instance,
    Task,
    TaskPriority,
)
from borg_coordinator.storage.alembic_runner import upgrade_head
from borg_coordinator.storage.common import build_engine, utc_now
from borg_coordinator.storage.sqlmodel_models import KeyValueEntry, ListEntry, SetMember

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "borg"

_T = TypeVar("_T")


class TaskQueueStore(Protocol):
    """Durable queue operations consumed by the registry and scheduler."""

    def ping(self) -> None: ...

    def push(self, task: Task) -> None: ...

    def pop_highest_priority(self) -> Task | None: ...

    def queue_depth_by_priority(self) -> dict[TaskPriority, int]: ...

    def clear(self, priority: TaskPriority | None = None) -> None: ...

    def put_instance_snapshot(self, instance: Instance) -> None: ...

    def put_task_snapshot(self, task: Task) -> None: ...

    def list_instance_snapshots(self) -> list[Instance]: ...

    def list_task_snapshots(self) -> list[Task]: ...


class DurableTaskQueue:
    """Priority-segmented task queue backed by SQLModel key-space tables.

    Key layout mirrors a Redis-style store so snapshots stay inspectable:

    - ``{ns}:tasks:{id}`` / ``{ns}:instances:{id}`` hold JSON snapshots;
    - ``{ns}:tasks`` / ``{ns}:instances`` are id sets;
    - ``{ns}:tasks:{priority}`` are FIFO lists (append on push, oldest on pop).

    Every failure is raised as :class:`PersistenceError`.
    """

    def __init__(self, store_url: str, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.store_url = store_url
        self.namespace = namespace
        try:
            self.engine = build_engine(store_url)
        except (SQLAlchemyError, ValueError) as error:
            raise PersistenceError(f"Invalid store URL {store_url!r}: {error}") from error

    def close(self) -> None:
        """Release pooled connections."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations for the key space."""

        self._guard("init_schema", lambda: upgrade_head(self.store_url))

    def ping(self) -> None:
        """Round-trip one read to verify connectivity."""

        def _ping() -> None:
            with Session(self.engine) as session:
                session.exec(
                    select(KeyValueEntry.key).where(
                        KeyValueEntry.key == f"{self.namespace}:ping",
                    ),
                ).one_or_none()

        self._guard("ping", _ping)
        logger.info("Task queue store reachable at %s", self.store_url)

    # -- keys ------------------------------------------------------------------

    def task_key(self, task_id: str) -> str:
        return f"{self.namespace}:tasks:{task_id}"

    def instance_key(self, instance_id: str) -> str:
        return f"{self.namespace}:instances:{instance_id}"

    def queue_key(self, priority: TaskPriority) -> str:
        return f"{self.namespace}:tasks:{priority.value}"

    @property
    def tasks_set_key(self) -> str:
        return f"{self.namespace}:tasks"

    @property
    def instances_set_key(self) -> str:
        return f"{self.namespace}:instances"

    # -- queue -----------------------------------------------------------------

    def push(self, task: Task) -> None:
        """Append a task to the segment matching its priority."""

        payload = self._encode(encode_task, task)
        key = self.queue_key(task.priority)

        def _push() -> None:
            with Session(self.engine) as session:
                session.add(ListEntry(key=key, value=payload, created_at=utc_now()))
                session.commit()

        self._guard("push", _push)
        logger.debug("Task %s added to %s priority queue", task.id, task.priority.value)

    def pop_highest_priority(self) -> Task | None:
        """Pop the oldest entry of the highest non-empty priority segment."""

        for priority in PRIORITY_DEQUEUE_ORDER:
            key = self.queue_key(priority)
            payload = self._guard("pop", lambda key=key: self._pop_oldest(key))
            if payload is None:
                continue
            task = self._decode(decode_task, payload)
            logger.debug("Retrieved task %s from %s priority queue", task.id, priority.value)
            return task
        return None

    def _pop_oldest(self, key: str) -> str | None:
        # Separate transactions: SQLite WAL cannot upgrade a read transaction
        # to a write once another writer has committed.
        while True:
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(ListEntry.entry_id, ListEntry.value)
                    .where(ListEntry.key == key)
                    .order_by(col(ListEntry.entry_id).asc())
                    .limit(1),
                ).one_or_none()
            if candidate is None:
                return None
            entry_id, value = candidate

            with Session(self.engine) as session:
                result = session.exec(
                    sa_delete(ListEntry).where(col(ListEntry.entry_id) == entry_id),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                session.commit()
                return value

    def queue_depth_by_priority(self) -> dict[TaskPriority, int]:
        """Return queued entry counts for every priority segment."""

        def _depths() -> dict[TaskPriority, int]:
            keys = {self.queue_key(priority): priority for priority in PRIORITY_DEQUEUE_ORDER}
            depths = {priority: 0 for priority in PRIORITY_DEQUEUE_ORDER}
            with Session(self.engine) as session:
                rows = session.exec(
                    select(ListEntry.key, func.count())
                    .where(col(ListEntry.key).in_(tuple(keys)))
                    .group_by(ListEntry.key),
                ).all()
            for key, count in rows:
                depths[keys[key]] = int(count)
            return depths

        return self._guard("queue_depth_by_priority", _depths)

    def clear(self, priority: TaskPriority | None = None) -> None:
        """Drop one priority segment, or all segments when priority is None."""

        priorities = PRIORITY_DEQUEUE_ORDER if priority is None else (priority,)
        keys = tuple(self.queue_key(item) for item in priorities)

        def _clear() -> None:
            with Session(self.engine) as session:
                session.exec(sa_delete(ListEntry).where(col(ListEntry.key).in_(keys)))
                session.commit()

        self._guard("clear", _clear)
        if priority is None:
            logger.info("Cleared all task queues")
        else:
            logger.info("Cleared %s priority queue", priority.value)

    # -- snapshots -------------------------------------------------------------

    def put_instance_snapshot(self, instance: Instance) -> None:
        payload = self._encode(encode_instance, instance)
        self._guard(
            "put_instance_snapshot",
            lambda: self._put_member_value(
                set_key=self.instances_set_key,
                member=instance.id,
                key=self.instance_key(instance.id),
                value=payload,
            ),
        )

    def put_task_snapshot(self, task: Task) -> None:
        payload = self._encode(encode_task, task)
        self._guard(
            "put_task_snapshot",
            lambda: self._put_member_value(
                set_key=self.tasks_set_key,
                member=task.id,
                key=self.task_key(task.id),
                value=payload,
            ),
        )

    def list_instance_snapshots(self) -> list[Instance]:
        """Load every stored instance snapshot; undecodable entries are skipped."""

        values = self._guard(
            "list_instance_snapshots",
            lambda: self._member_values(self.instances_set_key, self.instance_key),
        )
        return _decode_all(values, decode_instance, kind="instance")

    def list_task_snapshots(self) -> list[Task]:
        """Load every stored task snapshot; undecodable entries are skipped."""

        values = self._guard(
            "list_task_snapshots",
            lambda: self._member_values(self.tasks_set_key, self.task_key),
        )
        return _decode_all(values, decode_task, kind="task")

    def _put_member_value(self, *, set_key: str, member: str, key: str, value: str) -> None:
        now = utc_now()
        with Session(self.engine) as session:
            updated = session.exec(
                sa_update(KeyValueEntry)
                .where(col(KeyValueEntry.key) == key)
                .values(value=value, updated_at=now),
            )
            if updated.rowcount == 0:
                session.add(KeyValueEntry(key=key, value=value, updated_at=now))
            if session.get(SetMember, (set_key, member)) is None:
                session.add(SetMember(key=set_key, member=member))
            session.commit()

    def _member_values(self, set_key: str, key_for: Callable[[str], str]) -> list[str]:
        with Session(self.engine) as session:
            members = session.exec(
                select(SetMember.member)
                .where(SetMember.key == set_key)
                .order_by(col(SetMember.member).asc()),
            ).all()
            if not members:
                return []
            keys = [key_for(member) for member in members]
            rows = session.exec(
                select(KeyValueEntry).where(col(KeyValueEntry.key).in_(keys)),
            ).all()
        by_key = {row.key: row.value for row in rows}
        return [by_key[key] for key in keys if key in by_key]

    # -- helpers ---------------------------------------------------------------

    def _guard(self, operation: str, action: Callable[[], _T]) -> _T:
        try:
            return action()
        except SQLAlchemyError as error:
            raise PersistenceError(f"Task queue {operation} failed: {error}") from error

    @staticmethod
    def _encode(encoder: Callable[[_T], str], record: _T) -> str:
        try:
            return encoder(record)
        except (TypeError, ValueError) as error:
            raise PersistenceError(f"Serialization error: {error}") from error

    @staticmethod
    def _decode(decoder: Callable[[str], _T], payload: str) -> _T:
        try:
            return decoder(payload)
        except (KeyError, TypeError, ValueError) as error:
            raise PersistenceError(f"Serialization error: {error}") from error


@contextmanager
def open_task_queue(
    store_url: str,
    *,
    namespace: str = DEFAULT_NAMESPACE,
) -> Iterator[DurableTaskQueue]:
    """Open a migrated queue store and close it on exit."""

    queue = DurableTaskQueue(store_url, namespace=namespace)
    queue.init_schema()
    try:
        yield queue
    finally:
        queue.close()


def _decode_all(
    values: list[str],
    decoder: Callable[[str], _T],
    *,
    kind: str,
) -> list[_T]:
    records: list[_T] = []
    for value in values:
        try:
            records.append(decoder(value))
        except (KeyError, TypeError, ValueError) as error:
            logger.warning("Skipping undecodable %s snapshot: %s", kind, error)
    return records
