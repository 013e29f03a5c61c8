"""Shared fakes for fsck tests."""

from __future__ import annotations

import fnmatch
import io
import json

import pytest
from botocore.exceptions import ClientError

from s3fsck.lock import LockedOperation
from s3fsck.utils import object_name

BUCKET = "test-bucket"
NOW = 1_700_000_000


class InMemoryFileSystem:
    """Bucket contents as a flat key -> bytes dict with prefix directories."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_on:
            raise self.fail_on[op]

    def _tree(self, path: str) -> list[str]:
        name = object_name(path, BUCKET)
        return sorted(k for k in self.objects if k == name or k.startswith(name + "/"))

    def glob(self, pattern: str) -> list[str]:
        self.calls.append(("glob", pattern))
        return sorted(k for k in self.objects if fnmatch.fnmatchcase(k, pattern))

    def open_for_read(self, path: str) -> bytes:
        self.calls.append(("open", path))
        self._maybe_fail("open")
        return self.objects[path]

    def exists(self, path: str) -> bool:
        return bool(self._tree(path))

    def delete(self, path: str, recursive: bool = True) -> bool:
        self.calls.append(("delete", path))
        self._maybe_fail("delete")
        keys = self._tree(path)
        for key in keys:
            del self.objects[key]
        return bool(keys)

    def rename(self, src: str, dst: str) -> None:
        self.calls.append(("rename", src, dst))
        self._maybe_fail("rename")
        src_name = object_name(src, BUCKET)
        dst_name = object_name(dst, BUCKET)
        keys = self._tree(src)
        if not keys:
            raise FileNotFoundError(src)
        for key in keys:
            self.objects[dst_name + key[len(src_name):]] = self.objects.pop(key)

    def snapshot(self, path: str) -> dict[str, bytes]:
        name = object_name(path, BUCKET)
        return {k[len(name):]: self.objects[k] for k in self._tree(path)}


class InMemoryLockStore:
    def __init__(self, operations: list[LockedOperation] | None = None) -> None:
        self.locks: dict[str, set[str]] = {
            op.operation_id: set(op.resources) for op in operations or []
        }
        self.unlock_calls: list[tuple] = []

    def list_locked_operations(self) -> list[LockedOperation]:
        return [
            LockedOperation(operation_id=op_id, resources=frozenset(resources))
            for op_id, resources in sorted(self.locks.items())
        ]

    def unlock_resources(self, operation_id: str, *resources: str) -> bool:
        self.unlock_calls.append((operation_id, *resources))
        held = self.locks.get(operation_id)
        if held is None:
            return False
        names = {object_name(r, BUCKET) for r in resources}
        before = len(held)
        held -= names
        if not held:
            del self.locks[operation_id]
        return len(held) != before

    def is_locked(self, resource: str) -> bool:
        name = object_name(resource, BUCKET)
        return any(name in held for held in self.locks.values())


def delete_record(op_id: str, resource: str, epoch: int) -> tuple[str, bytes]:
    path = f"_lock/20231114221320_delete_{op_id}.lock"
    return path, json.dumps({"resource": resource, "lockEpochSeconds": epoch}).encode()


def rename_record(op_id: str, src: str, dst: str, copy_succeeded: bool, epoch: int) -> tuple[str, bytes]:
    path = f"_lock/20231114221320_rename_{op_id}.lock"
    payload = {
        "srcResource": src,
        "dstResource": dst,
        "copySucceeded": copy_succeeded,
        "lockEpochSeconds": epoch,
    }
    return path, json.dumps(payload).encode()


def client_error(code: str, operation: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _Paginator:
    def __init__(self, client: "FakeS3Client") -> None:
        self.client = client

    def paginate(self, Bucket: str, Prefix: str = "") -> list[dict]:
        self.client.calls.append(("list_objects_v2", Prefix))
        if "list" in self.client.fail_on:
            raise self.client.fail_on["list"]
        keys = sorted(k for k in self.client.objects if k.startswith(Prefix))
        # two keys per page to exercise pagination
        pages = [keys[i:i + 2] for i in range(0, len(keys), 2)] or [[]]
        return [{"Contents": [{"Key": k} for k in page]} if page else {} for page in pages]


class FakeS3Client:
    """Subset of the boto3 S3 client used by the adapters."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.etags: dict[str, int] = {k: 1 for k in self.objects}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self.conflicts_remaining = 0
        self.delete_errors: list[dict] = []

    def _etag(self, key: str) -> str:
        return f'"{self.etags[key]}"'

    def get_paginator(self, name: str) -> _Paginator:
        assert name == "list_objects_v2"
        return _Paginator(self)

    def get_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append(("get_object", Key))
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key]), "ETag": self._etag(Key)}

    def put_object(self, Bucket: str, Key: str, Body: bytes, **kwargs) -> dict:
        self.calls.append(("put_object", Key))
        if_match = kwargs.get("IfMatch")
        if if_match is not None:
            if self.conflicts_remaining > 0:
                self.conflicts_remaining -= 1
                raise client_error("PreconditionFailed", "PutObject")
            if Key not in self.objects or self._etag(Key) != if_match:
                raise client_error("PreconditionFailed", "PutObject")
        self.objects[Key] = Body
        self.etags[Key] = self.etags.get(Key, 0) + 1
        return {"ETag": self._etag(Key)}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append(("delete_object", Key))
        self.objects.pop(Key, None)
        return {}

    def delete_objects(self, Bucket: str, Delete: dict) -> dict:
        keys = [obj["Key"] for obj in Delete["Objects"]]
        self.calls.append(("delete_objects", tuple(keys)))
        if self.delete_errors:
            return {"Errors": self.delete_errors}
        for key in keys:
            self.objects.pop(key, None)
        return {}

    def copy(self, CopySource: dict, Bucket: str, Key: str, Config=None) -> None:
        self.calls.append(("copy", CopySource["Key"], Key))
        if "copy" in self.fail_on:
            raise self.fail_on["copy"]
        self.objects[Key] = self.objects[CopySource["Key"]]
        self.etags[Key] = 1

    def registry(self, key: str = "_lock/all.lock") -> dict:
        return json.loads(self.objects[key].decode("utf-8"))


def registry_body(*locks: dict) -> bytes:
    return json.dumps({"formatVersion": 1, "locks": list(locks)}).encode("utf-8")


@pytest.fixture
def fs() -> InMemoryFileSystem:
    return InMemoryFileSystem()


@pytest.fixture
def s3_client() -> FakeS3Client:
    return FakeS3Client()
