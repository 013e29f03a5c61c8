"""Hierarchical filesystem view over an S3 bucket.

Directories are key prefixes: ``a/b`` names the object ``a/b`` and every
object under ``a/b/``.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Optional, Protocol

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import ClientError

from .errors import FsckError, StorageBackendError
from .utils import literal_prefix, object_name

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


def create_s3_client(endpoint_url: Optional[str] = None,
                     access_key: Optional[str] = None,
                     secret_key: Optional[str] = None,
                     region: Optional[str] = None):
    """Create the S3 client shared by the lock store and the filesystem"""
    config = Config(
        s3={
            'use_accelerate_endpoint': False,
            'addressing_style': 'virtual',
            'payload_signing_enabled': False,
        },
        retries={'max_attempts': 5, 'mode': 'standard'},
    )

    return boto3.client(
        's3',
        config=config,
        region_name=region,
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key
    )


class FileSystem(Protocol):
    """Filesystem operations the recovery procedures rely on."""

    def glob(self, pattern: str) -> list[str]:
        """Return object names matching ``pattern``."""

    def open_for_read(self, path: str) -> bytes:
        """Return the full contents of an object."""

    def exists(self, path: str) -> bool:
        """Whether a file or directory exists at ``path``."""

    def delete(self, path: str, recursive: bool = True) -> bool:
        """Delete a file or directory; deleting a missing path succeeds."""

    def rename(self, src: str, dst: str) -> None:
        """Move a file or directory."""


class S3FileSystem:
    """Filesystem adapter used by fsck.

    ``repair_implicit_directories`` writes a ``parent/`` placeholder after a
    delete so the parent directory stays listable once its last child is gone.
    """

    def __init__(self,
                 s3_client,
                 bucket: str,
                 repair_implicit_directories: bool = False,
                 transfer_config: Optional[TransferConfig] = None):
        self.s3_client = s3_client
        self.bucket = bucket
        self.repair_implicit_directories = repair_implicit_directories
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=8 * 1024 * 1024,
            max_concurrency=10
        )

    def glob(self, pattern: str) -> list[str]:
        pattern = object_name(pattern, self.bucket)
        return sorted(
            key for key in self._list_keys(literal_prefix(pattern))
            if fnmatch.fnmatchcase(key, pattern)
        )

    def open_for_read(self, path: str) -> bytes:
        key = object_name(path, self.bucket)
        try:
            resp = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return resp['Body'].read()
        except ClientError as e:
            raise StorageBackendError('read', f"{key}: {e}") from e

    def exists(self, path: str) -> bool:
        name = object_name(path, self.bucket)
        return bool(self._tree_keys(name))

    def delete(self, path: str, recursive: bool = True) -> bool:
        """Delete ``path``; returns False when there was nothing to delete"""
        name = object_name(path, self.bucket)
        if not name:
            raise FsckError(f"refusing to delete the bucket root: {path}")

        keys = self._tree_keys(name)
        if not keys:
            logger.debug(f"delete: {name} does not exist")
            return False
        if not recursive and any(key != name for key in keys):
            raise FsckError(f"{name} is a non-empty directory")

        logger.info(f"delete: {name} ({len(keys)} objects)")
        self._delete_keys(keys)

        if self.repair_implicit_directories:
            self._repair_parent(name)
        return True

    def rename(self, src: str, dst: str) -> None:
        src_name = object_name(src, self.bucket)
        dst_name = object_name(dst, self.bucket)
        if not src_name or not dst_name:
            raise FsckError(f"cannot rename {src} to {dst}: bucket root")
        if dst_name == src_name or dst_name.startswith(src_name + '/'):
            raise FsckError(f"cannot rename {src_name} into itself ({dst_name})")

        keys = self._tree_keys(src_name)
        if not keys:
            raise FileNotFoundError(f"rename source does not exist: {src_name}")

        logger.info(f"rename: {src_name} -> {dst_name} ({len(keys)} objects)")
        for key in keys:
            dst_key = dst_name + key[len(src_name):]
            try:
                self.s3_client.copy(
                    {'Bucket': self.bucket, 'Key': key},
                    self.bucket,
                    dst_key,
                    Config=self.transfer_config
                )
            except ClientError as e:
                raise StorageBackendError('rename', f"copy {key} -> {dst_key}: {e}") from e
        self._delete_keys(keys)

    def _tree_keys(self, name: str) -> list[str]:
        return [
            key for key in self._list_keys(name)
            if key == name or key.startswith(name + '/')
        ]

    def _list_keys(self, prefix: str) -> list[str]:
        keys = []
        paginator = self.s3_client.get_paginator('list_objects_v2')
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj['Key'] for obj in page.get('Contents', []))
        except ClientError as e:
            raise StorageBackendError('list', f"{prefix}: {e}") from e
        return keys

    def _delete_keys(self, keys: list[str]):
        for i in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[i:i + DELETE_BATCH_SIZE]
            try:
                resp = self.s3_client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
            except ClientError as e:
                raise StorageBackendError('delete', str(e)) from e
            errors = resp.get('Errors', [])
            if errors:
                failed = ', '.join(f"{err.get('Key')} ({err.get('Code')})" for err in errors)
                raise StorageBackendError('delete', f"failed to delete {failed}")

    def _repair_parent(self, name: str):
        if '/' not in name:
            return
        parent = name.rsplit('/', 1)[0] + '/'
        if self._list_keys(parent):
            return
        logger.debug(f"repair implicit directory: {parent}")
        try:
            self.s3_client.put_object(Bucket=self.bucket, Key=parent, Body=b'')
        except ClientError as e:
            raise StorageBackendError('repair_directory', f"{parent}: {e}") from e
