from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_many(self, keys: list[str]) -> list[str]:
        """Best-effort bulk delete; returns the keys that could not be removed."""
        failed: list[str] = []
        for key in keys:
            try:
                self.delete(key)
            except StorageError:
                failed.append(key)
        return failed


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Storage key escapes root: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.exists():
            raise StorageError(f"Object not found: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 put failed for {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 get failed for {key}: {e}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e

    def delete_many(self, keys: list[str]) -> list[str]:
        failed: list[str] = []
        client = self._client()
        # delete_objects takes at most 1000 keys per call
        for start in range(0, len(keys), 1000):
            batch = keys[start : start + 1000]
            try:
                resp = client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError):
                failed.extend(batch)
                continue
            failed.extend(err["Key"] for err in resp.get("Errors", []))
        return failed


def photo_storage_key(user_id: int, sha256: str, filename: str, now: datetime) -> str:
    """photos/<user>/<yyyy-mm-dd>/<hash prefix>-<nonce>-<sanitized name>"""
    safe = secure_filename(filename) or "photo.jpg"
    # Same bytes uploaded twice are two photos; each owns its object.
    return f"photos/{user_id}/{now:%Y-%m-%d}/{sha256[:16]}-{uuid.uuid4().hex[:8]}-{safe}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "fra1").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root = (config.get("STORAGE_LOCAL_ROOT") or "").strip()
    return LocalStorage(root=Path(root) if root else Path(os.getcwd()) / "storage")
