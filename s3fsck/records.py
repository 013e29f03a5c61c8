"""Lock record payloads and lease expiration.

A lock record is a small JSON object written by a client before it starts a
guarded mutation. The kind of mutation is encoded in the record path
(``_delete_`` or ``_rename_``), the rest lives in the payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union

from .errors import LockRecordFormatError, UnknownOperationKindError
from .utils import operation_id_from_record

DEFAULT_LEASE_SECONDS = 120

DELETE_MARKER = '_delete_'
RENAME_MARKER = '_rename_'


@dataclass(frozen=True)
class DeleteIntent:
    """Recursive delete of a single resource"""

    resource: str
    lock_epoch_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return {'resource': self.resource, 'lockEpochSeconds': self.lock_epoch_seconds}


@dataclass(frozen=True)
class RenameIntent:
    """Move of ``src_resource`` to ``dst_resource``.

    ``copy_succeeded`` is set by the client once the destination holds a full
    copy and only the source cleanup is left.
    """

    src_resource: str
    dst_resource: str
    copy_succeeded: bool
    lock_epoch_seconds: int

    def to_dict(self) -> dict[str, Any]:
        return {
            'srcResource': self.src_resource,
            'dstResource': self.dst_resource,
            'copySucceeded': self.copy_succeeded,
            'lockEpochSeconds': self.lock_epoch_seconds,
        }


Intent = Union[DeleteIntent, RenameIntent]


@dataclass(frozen=True)
class LockRecord:
    """A decoded lock record object"""

    path: str
    operation_id: str
    intent: Intent

    @property
    def lock_epoch_seconds(self) -> int:
        return self.intent.lock_epoch_seconds


def _require(data: dict, key: str, kind: type, path: str) -> Any:
    value = data.get(key)
    # bool is an int subclass, keep epochs strictly numeric
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise LockRecordFormatError(path, f"'{key}' must be {kind.__name__}, got {value!r}")
    return value


def _decode_delete(data: dict, path: str) -> DeleteIntent:
    return DeleteIntent(
        resource=_require(data, 'resource', str, path),
        lock_epoch_seconds=_require(data, 'lockEpochSeconds', int, path),
    )


def _decode_rename(data: dict, path: str) -> RenameIntent:
    copy_succeeded = data.get('copySucceeded', False)
    if not isinstance(copy_succeeded, bool):
        raise LockRecordFormatError(path, f"'copySucceeded' must be bool, got {copy_succeeded!r}")
    return RenameIntent(
        src_resource=_require(data, 'srcResource', str, path),
        dst_resource=_require(data, 'dstResource', str, path),
        copy_succeeded=copy_succeeded,
        lock_epoch_seconds=_require(data, 'lockEpochSeconds', int, path),
    )


def decode_lock_record(path: str, content: bytes, operation_id: str | None = None) -> LockRecord:
    """Decode record bytes into a typed intent chosen by the record path

    ``operation_id`` is the id the registry knows the operation by; without it
    the id is taken from the record name.
    """
    if DELETE_MARKER in path:
        decoder = _decode_delete
    elif RENAME_MARKER in path:
        decoder = _decode_rename
    else:
        raise UnknownOperationKindError(path)

    try:
        data = json.loads(content.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise LockRecordFormatError(path, str(e)) from e
    if not isinstance(data, dict):
        raise LockRecordFormatError(path, 'payload is not a JSON object')

    return LockRecord(
        path=path,
        operation_id=operation_id or operation_id_from_record(path),
        intent=decoder(data, path),
    )


class ExpirationPolicy:
    """Fixed, non-renewable lease on lock records"""

    def __init__(self, lease_seconds: int = DEFAULT_LEASE_SECONDS):
        if lease_seconds < 0:
            raise ValueError(f"lease_seconds must not be negative: {lease_seconds}")
        self.lease_seconds = lease_seconds

    def is_expired(self, lock_epoch_seconds: int, now: float) -> bool:
        return lock_epoch_seconds + self.lease_seconds < now
