"""
S3-compatible object storage backend.

Works against AWS S3 and any service speaking its API (MinIO, Wasabi,
Backblaze B2's S3 endpoint). Object keys are laid out as
{prefix}/{relative path}.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from .base import (
    Backend,
    BackendConfig,
    FileEntry,
    as_utc,
    bool_option,
    extract_prefix,
    match_glob,
    require_option,
    sort_newest_first,
)
from .errors import (
    AuthenticationError,
    ConnectionFailedError,
    NotFoundError,
    OperationCancelledError,
    PermissionDeniedError,
    StorageError,
    StorageTimeoutError,
)
from .retry import RetryPolicy, with_retry


logger = logging.getLogger(__name__)

# Files above this size are sent as multipart uploads
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024

NOT_FOUND_CODES = {'404', 'NoSuchKey', 'NotFound'}
FORBIDDEN_CODES = {'403', 'AccessDenied', 'Forbidden'}
AUTH_CODES = {'InvalidAccessKeyId', 'SignatureDoesNotMatch', 'ExpiredToken', 'InvalidToken', 'Unauthorized', '401'}
TIMEOUT_CODES = {'RequestTimeout', 'RequestTimeTooSkewed'}
TRANSIENT_CODES = {'500', '502', '503', '504', 'InternalError', 'ServiceUnavailable', 'SlowDown'}


@dataclass(frozen=True)
class S3Settings:
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    endpoint: Optional[str] = None
    prefix: str = ''
    use_ssl: bool = True
    force_path_style: bool = False

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'S3Settings':
        options = config.options
        label = f"s3 ({config.name})"
        prefix = options.get('prefix') or config.base_dir or ''
        return cls(
            region=require_option(options, 'region', label),
            bucket=require_option(options, 'bucket', label),
            access_key_id=require_option(options, 'access_key_id', label),
            secret_access_key=require_option(options, 'secret_access_key', label),
            endpoint=options.get('endpoint') or None,
            prefix=str(prefix).strip('/'),
            use_ssl=bool_option(options, 'use_ssl', True),
            force_path_style=bool_option(options, 'force_path_style', False),
        )


def translate_error(error: Exception, operation: str, backend_name: str) -> StorageError:
    """
    Map a boto3/botocore exception onto the storage error hierarchy.

    Args:
        error: Exception raised by the client
        operation: Operation label for the message (upload, delete, ...)
        backend_name: Configured backend name

    Returns:
        StorageError subclass instance; the caller raises it from error
    """
    message = f"{operation} ({backend_name})"

    if isinstance(error, ClientError):
        code = str(error.response.get('Error', {}).get('Code', 'Unknown'))
        detail = f"{message}: {code}: {error}"
        if code in NOT_FOUND_CODES:
            return NotFoundError(detail)
        if code in AUTH_CODES:
            return AuthenticationError(detail)
        if code in FORBIDDEN_CODES:
            return PermissionDeniedError(detail)
        if code in TIMEOUT_CODES:
            return StorageTimeoutError(detail)
        if code in TRANSIENT_CODES:
            return ConnectionFailedError(detail)
        return StorageError(detail)

    if isinstance(error, NoCredentialsError):
        return AuthenticationError(f"{message}: {error}")
    if isinstance(error, (ConnectTimeoutError, ReadTimeoutError)):
        return StorageTimeoutError(f"{message}: {error}")
    if isinstance(error, EndpointConnectionError):
        return ConnectionFailedError(f"{message}: {error}")
    if isinstance(error, BotoCoreError):
        return StorageError(f"{message}: {error}")

    return StorageError(f"{message}: {error}")


class S3Backend(Backend):
    """
    Handler for storing backups in an S3 bucket.

    Bucket access is verified when the backend is constructed so that
    misconfigured destinations fail before any dump is taken.
    """

    backend_type = 's3'

    def __init__(self, name: str, settings: S3Settings, retry_policy: Optional[RetryPolicy] = None):
        """
        Initialize S3 storage backend.

        Args:
            name: Backend name from configuration
            settings: Validated connection settings
            retry_policy: Backoff used for writes (default policy if None)

        Raises:
            AuthenticationError: If the credentials are rejected
            ConnectionFailedError: If the bucket cannot be reached
        """
        super().__init__(name)
        self.settings = settings
        self.bucket_name = settings.bucket
        self.prefix = settings.prefix
        self.retry_policy = retry_policy
        self.s3_client = self._create_client()
        self._verify_bucket()

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'S3Backend':
        return cls(config.name, S3Settings.from_config(config))

    def _create_client(self):
        client_kwargs = {
            'aws_access_key_id': self.settings.access_key_id,
            'aws_secret_access_key': self.settings.secret_access_key,
            'region_name': self.settings.region,
            'use_ssl': self.settings.use_ssl,
        }
        if self.settings.endpoint:
            client_kwargs['endpoint_url'] = self.settings.endpoint
        if self.settings.force_path_style:
            client_kwargs['config'] = BotoConfig(s3={'addressing_style': 'path'})

        try:
            return boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise ConnectionFailedError(f"init ({self.name}): failed to create S3 client: {e}") from e

    def _verify_bucket(self):
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except (ClientError, BotoCoreError) as e:
            mapped = translate_error(e, 'connection test', self.name)
            if isinstance(mapped, (AuthenticationError, PermissionDeniedError)):
                raise AuthenticationError(f"connection test ({self.name}): access denied to bucket {self.bucket_name}") from e
            raise ConnectionFailedError(f"connection test ({self.name}): bucket {self.bucket_name} not reachable: {e}") from e

    def _key(self, relative_path: str) -> str:
        relative_path = relative_path.lstrip('/')
        if self.prefix:
            return f"{self.prefix}/{relative_path}"
        return relative_path

    def _relative(self, key: str) -> str:
        if self.prefix and key.startswith(self.prefix + '/'):
            return key[len(self.prefix) + 1:]
        return key

    def write(self, source_path: str, dest_path: str,
              cancel_event: Optional[threading.Event] = None) -> None:
        if not os.path.exists(source_path):
            raise NotFoundError(f"upload ({self.name}): source file not found: {source_path}")

        key = self._key(dest_path)
        with_retry(
            lambda: self._upload(source_path, key, cancel_event),
            policy=self.retry_policy,
            cancel_event=cancel_event,
            description=f"upload to {self.name}",
        )

    def _upload(self, source_path: str, key: str, cancel_event: Optional[threading.Event]):
        try:
            file_size = os.path.getsize(source_path)
            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(source_path, key, cancel_event)
            else:
                self._simple_upload(source_path, key)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, 'upload', self.name) from e

    def _simple_upload(self, source_path: str, key: str):
        with open(source_path, 'rb') as f:
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=f)

    def _multipart_upload(self, source_path: str, key: str, cancel_event: Optional[threading.Event]):
        """
        Upload a large file in chunks.

        The upload is aborted on any error so that no partial object is
        left behind; completion is atomic on the provider side.
        """
        response = self.s3_client.create_multipart_upload(Bucket=self.bucket_name, Key=key)
        upload_id = response['UploadId']
        parts = []

        try:
            with open(source_path, 'rb') as f:
                part_number = 1
                while True:
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelledError(f"upload ({self.name}): cancelled")

                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )
                    parts.append({'PartNumber': part_number, 'ETag': response['ETag']})
                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )
        except Exception:
            try:
                self.s3_client.abort_multipart_upload(Bucket=self.bucket_name, Key=key, UploadId=upload_id)
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id} on {self.name}: {abort_error}")
            raise

    def delete(self, path: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=self._key(path))
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, 'delete', self.name) from e

    def list_files(self, pattern: str) -> List[FileEntry]:
        list_prefix = self._key(extract_prefix(pattern))
        entries = []

        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=list_prefix):
                for obj in page.get('Contents', []):
                    relative_path = self._relative(obj['Key'])
                    if obj['Size'] == 0 or not match_glob(relative_path, pattern):
                        continue
                    entries.append(FileEntry(
                        path=relative_path,
                        size=obj['Size'],
                        mod_time=as_utc(obj['LastModified']),
                    ))
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, 'list', self.name) from e

        return sort_newest_first(entries)

    def stat(self, path: str) -> FileEntry:
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=self._key(path))
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, 'stat', self.name) from e

        return FileEntry(
            path=path,
            size=response.get('ContentLength', 0),
            mod_time=as_utc(response['LastModified']),
        )

    def close(self) -> None:
        client = getattr(self, 's3_client', None)
        if client is not None and hasattr(client, 'close'):
            client.close()
