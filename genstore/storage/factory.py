from dataclasses import dataclass

from genstore.config.settings import Settings
from genstore.storage.base import BaseBucketProvisioner, BaseStorageAdapter
from genstore.storage.cloudinary_adapter import CloudinaryStorageAdapter
from genstore.storage.exceptions import StorageConfigurationError
from genstore.storage.policy import StoragePolicy
from genstore.storage.provisioner import NoopProvisioner, SupabaseBucketProvisioner
from genstore.storage.supabase_adapter import SupabaseConnection, SupabaseStorageAdapter
from genstore.storage.unified_adapter import UnifiedStorageAdapter


@dataclass
class StorageBackend:
    """An adapter and the provisioner for the container it writes into."""

    adapter: BaseStorageAdapter
    provisioner: BaseBucketProvisioner

    async def aclose(self) -> None:
        await self.adapter.aclose()


class StorageFactory:
    """Creates the configured storage backend."""

    SUPPORTED_PROVIDERS = ("unified", "cloudinary", "supabase")

    @classmethod
    def create(
        cls,
        settings: Settings,
        supabase_connection: SupabaseConnection | None = None,
    ) -> StorageBackend:
        """Create a storage backend from application settings.

        Credentials are checked later, by the processor, so that a missing
        key is reported per request instead of crashing startup.
        """
        provider = settings.storage_provider.lower()
        policy = StoragePolicy.from_settings(settings)

        if provider == "cloudinary":
            return StorageBackend(
                adapter=cls._cloudinary(settings, policy), provisioner=NoopProvisioner()
            )

        connection = supabase_connection or SupabaseConnection(
            settings.supabase_url, settings.supabase_service_role_key
        )
        if provider == "supabase":
            return StorageBackend(
                adapter=cls._supabase(settings, policy, connection),
                provisioner=cls._supabase_provisioner(settings, policy, connection),
            )

        if provider == "unified":
            adapter = UnifiedStorageAdapter(
                primary=cls._cloudinary(settings, policy),
                fallback=cls._supabase(settings, policy, connection),
                fallback_provisioner=cls._supabase_provisioner(settings, policy, connection),
            )
            return StorageBackend(adapter=adapter, provisioner=NoopProvisioner())

        raise StorageConfigurationError(
            f"Unknown storage provider '{provider}'. Choose from: {list(cls.SUPPORTED_PROVIDERS)}"
        )

    @staticmethod
    def _cloudinary(settings: Settings, policy: StoragePolicy) -> CloudinaryStorageAdapter:
        return CloudinaryStorageAdapter(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            root_folder=settings.storage_root_folder,
            policy=policy,
            timeout_seconds=settings.storage_timeout_seconds,
        )

    @staticmethod
    def _supabase(
        settings: Settings, policy: StoragePolicy, connection: SupabaseConnection
    ) -> SupabaseStorageAdapter:
        return SupabaseStorageAdapter(
            connection=connection, bucket=settings.supabase_bucket, policy=policy
        )

    @staticmethod
    def _supabase_provisioner(
        settings: Settings, policy: StoragePolicy, connection: SupabaseConnection
    ) -> SupabaseBucketProvisioner:
        return SupabaseBucketProvisioner(
            connection=connection,
            bucket=settings.supabase_bucket,
            policy=policy,
            public=settings.supabase_bucket_public,
        )
