"""Job persistence backed by a key-value brain.

The brain holds one mapping per namespace, ``job id -> serialized record``.
``JobStore`` adapts a brain to jobs of one namespace.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Protocol, TypeVar

from roomcron.scheduling.errors import PersistenceError
from roomcron.scheduling.types import Job, Namespace

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

Record = list[Any]


class BrainStore(Protocol):
    """Key-value store shared with the rest of the bot."""

    def get(self, namespace: str) -> dict[str, Record]: ...

    def set(self, namespace: str, key: str, record: Record) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...


class MemoryBrain:
    """In-process brain. Records are copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Record]] = {}

    def get(self, namespace: str) -> dict[str, Record]:
        return json.loads(json.dumps(self._data.get(namespace, {})))

    def set(self, namespace: str, key: str, record: Record) -> None:
        self._data.setdefault(namespace, {})[key] = json.loads(json.dumps(record))

    def delete(self, namespace: str, key: str) -> None:
        self._data.get(namespace, {}).pop(key, None)


class JsonFileBrain:
    """Brain persisted as one JSON document per namespace.

    Writes are serialized with an advisory file lock and land atomically
    via tempfile + fsync + replace.
    """

    def __init__(self, brain_dir: Path) -> None:
        self._dir = brain_dir
        self._lock_file = brain_dir / ".brain.lock"

    @property
    def brain_dir(self) -> Path:
        return self._dir

    def get(self, namespace: str) -> dict[str, Record]:
        return self._read(namespace)

    def set(self, namespace: str, key: str, record: Record) -> None:
        def mutate(records: dict[str, Record]) -> None:
            records[key] = record

        self._mutate(namespace, mutate)

    def delete(self, namespace: str, key: str) -> None:
        def mutate(records: dict[str, Record]) -> None:
            records.pop(key, None)

        self._mutate(namespace, mutate)

    def _path(self, namespace: str) -> Path:
        return self._dir / f"{namespace}.json"

    def _read(self, namespace: str) -> dict[str, Record]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path} does not hold a JSON object")
        return data

    @contextmanager
    def _file_lock(self, file: IO) -> Iterator[None]:
        try:
            fcntl.flock(file.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(file.fileno(), fcntl.LOCK_UN)

    def _mutate(
        self,
        namespace: str,
        mutate: Callable[[dict[str, Record]], _T],
    ) -> _T:
        self._dir.mkdir(parents=True, exist_ok=True)
        with self._lock_file.open("a+") as lockf:
            with self._file_lock(lockf):
                records = self._read(namespace)
                result = mutate(records)
                _write_json_atomic(self._path(namespace), records)
                return result


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write JSON atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(data, separators=(",", ":")))
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        Path(tmp).replace(path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise


class JobStore:
    """Saves and loads the jobs of one namespace.

    Brain failures surface as ``PersistenceError``.
    """

    def __init__(self, brain: BrainStore, namespace: Namespace | str) -> None:
        self._brain = brain
        self._namespace = (
            namespace.value if isinstance(namespace, Namespace) else namespace
        )

    @property
    def namespace(self) -> str:
        return self._namespace

    def load(self) -> dict[str, Record]:
        """Raw records keyed by job id."""
        with self._wrap_errors("load"):
            return dict(self._brain.get(self._namespace))

    def contains(self, job_id: str) -> bool:
        return job_id in self.load()

    def save(self, job: Job) -> None:
        with self._wrap_errors("save", job.id):
            self._brain.set(self._namespace, job.id, job.to_record())
        logger.debug(f"Saved job {job.id} to {self._namespace}")

    def delete(self, job_id: str) -> None:
        with self._wrap_errors("delete", job_id):
            self._brain.delete(self._namespace, job_id)
        logger.debug(f"Deleted job {job_id} from {self._namespace}")

    @contextmanager
    def _wrap_errors(self, operation: str, job_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except (OSError, ValueError, TypeError) as e:
            logger.error(
                "job_store_failed",
                extra={
                    "schedule.namespace": self._namespace,
                    "schedule.job_id": job_id,
                    "store.operation": operation,
                    "error.message": str(e),
                },
            )
            raise PersistenceError(
                f"Could not {operation} {self._namespace} record: {e}",
                reply="Something went wrong saving this job.",
            ) from e
