import abc
import logging
import os
from pathlib import Path
from typing import Optional

from trustforge.core.config import settings
from trustforge.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class StorageProvider(abc.ABC):
    """
    Abstract base class for the object store (Local, S3, ...).
    References are forward-slash keys such as ``app-uploads/<owner>/<uuid>_<name>``.
    """

    @abc.abstractmethod
    def store(self, reference: str, data: bytes) -> str:
        """
        Save ``data`` under ``reference`` and return the reference.
        """
        pass

    @abc.abstractmethod
    def fetch(self, reference: str) -> bytes:
        """
        Return the stored bytes. Raises PersistenceError if missing or unreadable.
        """
        pass

    @abc.abstractmethod
    def delete(self, reference: str) -> bool:
        """
        Delete the object.
        """
        pass


class LocalStorageProvider(StorageProvider):
    """
    Stores objects on the local filesystem.
    Suitable for development or single-server deployment.
    """
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.LOCAL_STORAGE_DIR).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, reference: str) -> Path:
        target = (self.base_dir / reference).resolve()
        if self.base_dir not in target.parents:
            raise PersistenceError(f"Reference escapes storage root: {reference}")
        return target

    def store(self, reference: str, data: bytes) -> str:
        target = self._path(reference)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(target, "wb") as buffer:
                buffer.write(data)
        except OSError as e:
            raise PersistenceError(f"Local store failed for {reference}: {e}")
        return reference

    def fetch(self, reference: str) -> bytes:
        try:
            with open(self._path(reference), "rb") as fh:
                return fh.read()
        except OSError as e:
            raise PersistenceError(f"Local fetch failed for {reference}: {e}")

    def delete(self, reference: str) -> bool:
        try:
            os.remove(self._path(reference))
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete {reference}: {e}")
            return False


class S3StorageProvider(StorageProvider):
    """
    Stores objects in AWS S3.
    Requires: boto3
    """
    def __init__(self, client=None, bucket: Optional[str] = None):
        if client is None:
            import boto3
            client = boto3.client(
                "s3",
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
                region_name=settings.AWS_REGION,
            )
        self.s3 = client
        self.bucket = bucket or settings.AWS_BUCKET_NAME

    def store(self, reference: str, data: bytes) -> str:
        try:
            self.s3.put_object(Bucket=self.bucket, Key=reference, Body=data)
            return reference
        except Exception as e:
            raise PersistenceError(f"S3 Upload failed: {e}")

    def fetch(self, reference: str) -> bytes:
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=reference)
            return response["Body"].read()
        except Exception as e:
            raise PersistenceError(f"S3 Download failed: {e}")

    def delete(self, reference: str) -> bool:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=reference)
            return True
        except Exception as e:
            logger.warning(f"S3 delete failed for {reference}: {e}")
            return False


# ─── Factory ─────────────────────────────────────────────────────────────────

def get_storage_provider() -> StorageProvider:
    if settings.STORAGE_TYPE.lower() == "s3":
        return S3StorageProvider()
    return LocalStorageProvider()
