"""Crash recovery for cooperative locking on S3 buckets"""

from .core import Fsck, FsckReport, OutcomeStatus, RecoveryOutcome
from .filesystem import S3FileSystem, create_s3_client
from .lock import LockedOperation, S3LockStore
from .records import DeleteIntent, ExpirationPolicy, LockRecord, RenameIntent, decode_lock_record

__version__ = '0.1.0'

__all__ = [
    'DeleteIntent',
    'ExpirationPolicy',
    'Fsck',
    'FsckReport',
    'LockRecord',
    'LockedOperation',
    'OutcomeStatus',
    'RecoveryOutcome',
    'RenameIntent',
    'S3FileSystem',
    'S3LockStore',
    'create_s3_client',
    'decode_lock_record',
]
