"""Registry of locked resources kept in the bucket's lock directory"""

from __future__ import annotations

import fnmatch
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from botocore.exceptions import ClientError, ParamValidationError

from .errors import StorageBackendError
from .utils import object_name, record_pattern

logger = logging.getLogger(__name__)

LOCK_DIRECTORY = '_lock/'
REGISTRY_NAME = 'all.lock'
REGISTRY_FORMAT_VERSION = 1


@dataclass(frozen=True)
class LockedOperation:
    """An operation holding locks on ``resources`` (object names in the bucket)"""

    operation_id: str
    resources: frozenset[str]
    lock_epoch_seconds: int | None = None


class LockStore(Protocol):
    """Source of locked operations and the primitive that releases them."""

    def list_locked_operations(self) -> list[LockedOperation]:
        """Return every operation currently holding locks."""

    def unlock_resources(self, operation_id: str, *resources: str) -> bool:
        """Release ``resources`` held by ``operation_id``."""


class _PreconditionFailed(Exception):
    pass


class S3LockStore:
    """Lock registry stored as a single JSON object next to the lock records.

    Registry layout::

        {"formatVersion": 1,
         "locks": [{"operationId": ..., "operationEpochSeconds": ..., "resources": [...]}]}

    Updates are compare-and-swap writes on the registry ETag.
    """

    def __init__(self,
                 s3_client,
                 bucket: str,
                 lock_directory: str = LOCK_DIRECTORY,
                 max_attempts: int = 10):
        self.s3_client = s3_client
        self.bucket = bucket
        self.lock_directory = lock_directory.strip('/') + '/'
        self.max_attempts = max_attempts

    @property
    def registry_key(self) -> str:
        return self.lock_directory + REGISTRY_NAME

    def list_locked_operations(self) -> list[LockedOperation]:
        registry, _ = self._read_registry()
        return [
            LockedOperation(
                operation_id=entry['operationId'],
                resources=frozenset(entry.get('resources', [])),
                lock_epoch_seconds=entry.get('operationEpochSeconds'),
            )
            for entry in registry['locks']
        ]

    def unlock_resources(self, operation_id: str, *resources: str) -> bool:
        """Remove ``resources`` from the operation's lock entry.

        An entry left without resources is dropped together with the
        operation's lock record objects. Unknown operations or resources are
        ignored. Returns True when the registry changed.
        """
        names = {object_name(r, self.bucket) for r in resources}

        for attempt in range(self.max_attempts):
            registry, etag = self._read_registry()
            if etag is None:
                return False

            changed, released = self._remove_resources(registry, operation_id, names)
            if not changed:
                logger.debug(f"nothing to unlock for operation {operation_id}")
                return False

            try:
                self._write_registry(registry, etag)
            except _PreconditionFailed:
                logger.debug(f"lock registry changed concurrently, retry {attempt + 1}")
                time.sleep(0.05 * (attempt + 1) + random.uniform(0.0, 0.05))
                continue

            logger.info(f"unlocked {sorted(names)} for operation {operation_id}")
            if released:
                self._delete_records(operation_id)
            return True

        raise StorageBackendError(
            'unlock_resources',
            f"lock registry kept changing, gave up after {self.max_attempts} attempts"
        )

    @staticmethod
    def _remove_resources(registry: dict, operation_id: str, names: set) -> tuple[bool, bool]:
        """Returns (changed, released) where released means the entry was dropped"""
        for entry in registry['locks']:
            if entry.get('operationId') != operation_id:
                continue
            held = entry.get('resources', [])
            remaining = [r for r in held if r.strip('/') not in names]
            if len(remaining) == len(held):
                return False, False
            if remaining:
                entry['resources'] = remaining
                return True, False
            registry['locks'].remove(entry)
            return True, True
        return False, False

    def _delete_records(self, operation_id: str):
        pattern = record_pattern(self.lock_directory, operation_id)
        keys = [
            key for key in self._list_keys(self.lock_directory)
            if key != self.registry_key and fnmatch.fnmatchcase(key, pattern)
        ]
        for key in keys:
            try:
                self.s3_client.delete_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                raise StorageBackendError('delete_lock_record', f"{key}: {e}") from e
            logger.info(f"deleted lock record {key}")

    def _list_keys(self, prefix: str) -> Iterable[str]:
        paginator = self.s3_client.get_paginator('list_objects_v2')
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get('Contents', []):
                    yield obj['Key']
        except ClientError as e:
            raise StorageBackendError('list_lock_directory', str(e)) from e

    def _read_registry(self) -> tuple[dict[str, Any], str | None]:
        try:
            resp = self.s3_client.get_object(Bucket=self.bucket, Key=self.registry_key)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code in {'NoSuchKey', '404', 'NotFound'}:
                return {'formatVersion': REGISTRY_FORMAT_VERSION, 'locks': []}, None
            raise StorageBackendError('read_lock_registry', str(e)) from e

        body = resp['Body'].read()
        try:
            registry = json.loads(body.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageBackendError('read_lock_registry', f"corrupt registry: {e}") from e
        if not isinstance(registry, dict) or not isinstance(registry.get('locks'), list):
            raise StorageBackendError('read_lock_registry', 'registry has no locks list')
        return registry, resp.get('ETag')

    def _write_registry(self, registry: dict, etag: str):
        body = json.dumps(registry, sort_keys=True).encode('utf-8')
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=self.registry_key,
                Body=body,
                ContentType='application/json',
                IfMatch=etag,
            )
        except ParamValidationError as e:
            raise StorageBackendError(
                'write_lock_registry',
                'S3 endpoint does not support conditional write preconditions'
            ) from e
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', '')
            if code in {'PreconditionFailed', '412'}:
                raise _PreconditionFailed() from e
            raise StorageBackendError('write_lock_registry', str(e)) from e
