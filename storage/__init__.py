from .storage_provider import ObjectStore, StoredObject
from .provider_factory import StorageProviderFactory
from .artifact_store import ArtifactStore, generate_audio_filename, generate_storage_key

__all__ = [
    "ObjectStore",
    "StoredObject",
    "StorageProviderFactory",
    "ArtifactStore",
    "generate_audio_filename",
    "generate_storage_key",
]
