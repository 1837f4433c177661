from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

PROVIDER_TYPES: dict[str, str] = {
    "local": "Local",
    "sftp": "SFTP",
    "hetzner": "Hetzner Storage Box",
    "ftp": "FTP",
    "s3": "Amazon S3",
    "wasabi": "Wasabi",
    "minio": "MinIO",
    "b2": "Backblaze B2",
    "smb": "SMB / CIFS",
    "webdav": "WebDAV",
    "nextcloud": "Nextcloud",
    "gdrive": "Google Drive",
    "gphotos": "Google Photos",
}

# Provider types addressed by bucket and access keys.
BUCKET_PROVIDERS = {"s3", "wasabi", "minio", "b2"}


@dataclass
class Endpoint:
    """One side (source or destination) of a transfer config."""

    type: str
    path: str
    host: str = ""
    port: int = 22
    user: str = ""
    key_file: str = ""
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    endpoint: str = ""
    share: str = ""
    domain: str = ""
    passive_mode: bool = True
    # Never persisted; only carried for connection tests.
    password: str = ""
    secret_key: str = ""


@dataclass
class TransferConfig:
    id: int
    name: str
    source: Endpoint
    destination: Endpoint
    created_by: int
    created_at: datetime
    updated_at: datetime
    file_pattern: str = "*"
    output_pattern: str = ""
    archive_enabled: bool = False
    archive_path: str = ""
    delete_after_transfer: bool = False
    skip_processed_files: bool = True
    max_concurrent_transfers: int = 4
    rclone_flags: str = ""

    @property
    def source_type(self) -> str:
        return self.source.type

    @property
    def destination_type(self) -> str:
        return self.destination.type
