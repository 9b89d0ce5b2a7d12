"""
Backblaze B2 storage backend.

Talks to B2 through its S3-compatible API, so the upload, listing and
error handling paths are shared with S3Backend. The B2 key ID and
application key act as the access key pair.
"""

from dataclasses import dataclass
from typing import Optional

from .base import BackendConfig, require_option
from .errors import AuthenticationError, ConnectionFailedError, InvalidConfigError
from .retry import RetryPolicy
from .s3 import S3Backend, S3Settings


B2_ENDPOINT_TEMPLATE = 'https://s3.{region}.backblazeb2.com'


@dataclass(frozen=True)
class BackblazeSettings:
    account_id: str
    application_key: str
    bucket_name: str
    endpoint: str
    region: str
    bucket_id: Optional[str] = None
    prefix: str = ''

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'BackblazeSettings':
        options = config.options
        label = f"backblaze ({config.name})"

        account_id = require_option(options, 'account_id', label)
        application_key = require_option(options, 'application_key', label)
        bucket_name = require_option(options, 'bucket_name', label)

        region = options.get('region') or ''
        endpoint = options.get('endpoint') or ''
        if not endpoint:
            if not region:
                raise InvalidConfigError(f"{label}: one of 'region' or 'endpoint' is required")
            endpoint = B2_ENDPOINT_TEMPLATE.format(region=region)
        if not region:
            # s3.<region>.backblazeb2.com
            host = endpoint.split('://', 1)[-1]
            parts = host.split('.')
            region = parts[1] if len(parts) > 2 and parts[0] == 's3' else 'us-west-000'

        prefix = options.get('prefix') or config.base_dir or ''
        return cls(
            account_id=account_id,
            application_key=application_key,
            bucket_name=bucket_name,
            endpoint=endpoint,
            region=region,
            bucket_id=options.get('bucket_id') or None,
            prefix=str(prefix).strip('/'),
        )

    def to_s3_settings(self) -> S3Settings:
        return S3Settings(
            region=self.region,
            bucket=self.bucket_name,
            access_key_id=self.account_id,
            secret_access_key=self.application_key,
            endpoint=self.endpoint,
            prefix=self.prefix,
            use_ssl=True,
            force_path_style=False,
        )


class BackblazeBackend(S3Backend):
    """Stores backups in a Backblaze B2 bucket."""

    backend_type = 'backblaze'

    def __init__(self, name: str, settings: BackblazeSettings, retry_policy: Optional[RetryPolicy] = None):
        self.b2_settings = settings
        super().__init__(name, settings.to_s3_settings(), retry_policy=retry_policy)

    @classmethod
    def from_config(cls, config: BackendConfig) -> 'BackblazeBackend':
        return cls(config.name, BackblazeSettings.from_config(config))

    def _create_client(self):
        try:
            return super()._create_client()
        except ConnectionFailedError as e:
            raise AuthenticationError(f"init ({self.name}): failed to authorize B2 account: {e}") from e
