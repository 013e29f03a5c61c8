"""Roll-forward recovery of abandoned delete and rename operations.

Both procedures are idempotent: every filesystem step tolerates having
already been done, and the lock is released only after the filesystem
reached the operation's end state. Any error propagates with the lock held.
"""

import logging

from .errors import ConsistencyError
from .filesystem import FileSystem
from .lock import LockStore
from .records import DeleteIntent, LockRecord, RenameIntent

logger = logging.getLogger(__name__)


def _unlock(record: LockRecord, lock_store: LockStore, *resources: str):
    if not lock_store.unlock_resources(record.operation_id, *resources):
        raise ConsistencyError(
            f"operation {record.operation_id} held no lock on {list(resources)} "
            f"after repairing {record.path}"
        )


def recover_delete(record: LockRecord, fs: FileSystem, lock_store: LockStore):
    intent = record.intent
    logger.info(f"Repairing FS after {record.path} delete operation.")
    fs.delete(intent.resource, recursive=True)
    _unlock(record, lock_store, intent.resource)


def recover_rename(record: LockRecord, fs: FileSystem, lock_store: LockStore):
    intent = record.intent
    if intent.copy_succeeded:
        logger.info(
            f"Repairing FS after {record.path} rename operation "
            f"(deleting source ({intent.src_resource}))."
        )
        fs.delete(intent.src_resource, recursive=True)
    elif not fs.exists(intent.src_resource):
        # nothing left to move; deleting the destination here would lose data
        logger.info(
            f"Rename {record.path} source {intent.src_resource} is gone, "
            f"keeping {intent.dst_resource} and only unlocking."
        )
    else:
        logger.info(
            f"Repairing FS after {record.path} rename operation "
            f"(deleting destination ({intent.dst_resource}) and renaming "
            f"({intent.src_resource} -> {intent.dst_resource}))."
        )
        fs.delete(intent.dst_resource, recursive=True)
        fs.rename(intent.src_resource, intent.dst_resource)
    _unlock(record, lock_store, intent.src_resource, intent.dst_resource)


def recover(record: LockRecord, fs: FileSystem, lock_store: LockStore):
    """Dispatch on the record's intent type"""
    if isinstance(record.intent, DeleteIntent):
        recover_delete(record, fs, lock_store)
    elif isinstance(record.intent, RenameIntent):
        recover_rename(record, fs, lock_store)
    else:
        raise TypeError(f"unsupported intent {type(record.intent).__name__}")
