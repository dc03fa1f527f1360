"""
Object Storage Service for S3-compatible storage (MinIO, AWS S3, DigitalOcean Spaces).

Holds the inventory workbook that the Excel import reads. Uses boto3 with
s3v4 signatures so the same code runs against MinIO locally and S3 in
production.
"""
import logging
from typing import Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError
from flask import current_app

from almacen.exceptions import NotFoundError, StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)


class StorageService:
    """
    S3-compatible object storage service.

    Usage:
        storage = StorageService()
        data = storage.download_file('inventario/inventario.xlsx')
    """

    def __init__(self, client=None):
        """Initialize S3 client from Flask config."""
        self.endpoint = current_app.config['S3_ENDPOINT']
        self.bucket = current_app.config['S3_BUCKET']

        self.client = client or boto3.client(
            's3',
            endpoint_url=self.endpoint,
            aws_access_key_id=current_app.config['S3_ACCESS_KEY'],
            aws_secret_access_key=current_app.config['S3_SECRET_KEY'],
            region_name=current_app.config['S3_REGION'],
            config=BotoConfig(signature_version='s3v4')
        )

    def download_file(self, object_name: str, max_size: Optional[int] = None) -> bytes:
        """
        Read an object into memory.

        Raises:
            NotFoundError: object does not exist
            ValidationError: object larger than max_size
            StoreUnavailableError: storage unreachable
        """
        try:
            logger.info(f"[STORAGE] Downloading '{object_name}' from bucket '{self.bucket}'...")
            response = self.client.get_object(Bucket=self.bucket, Key=object_name)

            size = response.get('ContentLength')
            if max_size and size and size > max_size:
                raise ValidationError(
                    f'El archivo es demasiado grande. Máximo {max_size / (1024 * 1024):.1f}MB'
                )

            data = response['Body'].read()
            logger.info(f"[STORAGE] ✓ Downloaded '{object_name}' ({len(data)} bytes)")
            return data

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code in ('NoSuchKey', '404'):
                raise NotFoundError(f"Archivo '{object_name}' no encontrado en almacenamiento") from e
            logger.exception(f"[STORAGE] ✗ Download failed: {e}")
            raise StoreUnavailableError('Almacenamiento de archivos no disponible') from e
        except BotoCoreError as e:
            logger.exception(f"[STORAGE] ✗ Download failed: {e}")
            raise StoreUnavailableError('Almacenamiento de archivos no disponible') from e


_storage_service = None


def get_storage_service() -> StorageService:
    """Get or create StorageService singleton."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
