"""
Factory for creating object store instances.

Simplifies backend selection and initialization.
"""

import logging

from shared.config import ServiceConfig
from .storage_provider import ObjectStore
from .s3_provider import S3CompatibleProvider
from .local_provider import LocalStorageProvider

logger = logging.getLogger(__name__)

BACKEND_S3 = "s3"
BACKEND_LOCAL = "local"


class StorageProviderFactory:
    """Factory for creating object store instances."""

    @staticmethod
    def create(backend: str) -> ObjectStore:
        """
        Create an unauthenticated object store.

        Raises:
            ValueError: If the backend is not supported
        """
        if backend == BACKEND_S3:
            return S3CompatibleProvider()
        elif backend == BACKEND_LOCAL:
            return LocalStorageProvider()
        else:
            raise ValueError(f"Unknown storage backend: {backend}")

    @staticmethod
    def from_config(config: ServiceConfig) -> ObjectStore:
        """
        Create and authenticate the configured backend.

        Raises:
            RuntimeError: If the backend rejects the configuration
        """
        store = StorageProviderFactory.create(config.storage_backend)
        if config.storage_backend == BACKEND_S3:
            credentials = {
                'endpoint': config.s3_endpoint,
                'bucket': config.s3_bucket,
                'access_key_id': config.s3_access_key_id,
                'secret_access_key': config.s3_secret_access_key,
                'region': config.s3_region,
                'public_base_url': config.s3_public_base_url,
            }
        else:
            credentials = {'base_path': config.local_storage_dir}

        if not store.authenticate(credentials):
            raise RuntimeError(f"Could not initialize '{config.storage_backend}' storage backend")
        logger.info(f"Storage backend: {StorageProviderFactory.get_provider_name(config.storage_backend)}")
        return store

    @staticmethod
    def get_provider_name(backend: str) -> str:
        """Get human-readable backend name."""
        names = {
            BACKEND_S3: "S3-Compatible (R2, S3, MinIO)",
            BACKEND_LOCAL: "Local Filesystem",
        }
        return names.get(backend, "Unknown")
