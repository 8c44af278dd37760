from libs.core.application.analysis import SimulatedAnalysisProvider
from libs.core.application.batch_service import BatchService
from libs.core.application.contracts import (
    AnalysisProvider,
    BatchRepository,
    BlobStore,
    EventRepository,
    VideoRepository,
    WatchedFolderScanner,
)
from libs.infra.media.ffprobe import FfprobeDurationProbe
from libs.infra.sql.repositories import (
    SqlBatchRepository,
    SqlEventRepository,
    SqlVideoRepository,
)
from libs.infra.sql.session import build_engine, build_session_factory, init_db
from libs.infra.storage.local_blob_store import LocalBlobStore
from libs.infra.storage.s3_blob_store import S3BlobStore
from services.api_gateway.infrastructure.analysis_runner import AnalysisRunner
from services.api_gateway.infrastructure.memory_store import (
    InMemoryBatchRepository,
    InMemoryDatabase,
    InMemoryEventRepository,
    InMemoryVideoRepository,
)
from services.api_gateway.infrastructure.watched_folder import NullWatchedFolderScanner
from services.api_gateway.settings import Settings, get_settings

Repositories = tuple[BatchRepository, VideoRepository, EventRepository]


def build_repositories(settings: Settings, db: InMemoryDatabase) -> Repositories:
    if settings.store_backend == "memory":
        return (
            InMemoryBatchRepository(db),
            InMemoryVideoRepository(db),
            InMemoryEventRepository(db),
        )

    engine = build_engine(settings.database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)
    return (
        SqlBatchRepository(session_factory),
        SqlVideoRepository(session_factory),
        SqlEventRepository(session_factory),
    )


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "s3":
        if not (
            settings.s3_endpoint
            and settings.s3_bucket
            and settings.s3_access_key_id
            and settings.s3_secret_access_key
        ):
            raise ValueError("S3 blob backend requires endpoint, bucket and keys")
        return S3BlobStore(
            endpoint_url=settings.s3_endpoint,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            region=settings.s3_region,
            upload_expiration_sec=settings.upload_token_ttl_sec,
        )
    return LocalBlobStore(
        root_dir=settings.blob_dir,
        base_url=settings.public_base_url,
        secret=settings.upload_token_secret,
        token_ttl_sec=settings.upload_token_ttl_sec,
    )


def build_analysis_provider(
    settings: Settings,
    blob_store: BlobStore,
) -> AnalysisProvider:
    if settings.duration_probe == "ffprobe":
        return SimulatedAnalysisProvider(
            duration_probe=FfprobeDurationProbe(
                blob_store, ffprobe_path=settings.ffprobe_path
            )
        )
    return SimulatedAnalysisProvider()


settings = get_settings()
db = InMemoryDatabase()
analysis_runner = AnalysisRunner()
watched_folder_scanner: WatchedFolderScanner = NullWatchedFolderScanner()
repositories = build_repositories(settings, db)
default_blob_store = build_blob_store(settings)


def build_batch_service(
    analysis_provider: AnalysisProvider | None = None,
    blob_store: BlobStore | None = None,
    analysis_delay_sec: float | None = None,
) -> BatchService:
    batch_repository, video_repository, event_repository = repositories
    blobs = blob_store or default_blob_store
    return BatchService(
        batch_repository=batch_repository,
        video_repository=video_repository,
        event_repository=event_repository,
        blob_store=blobs,
        analysis_provider=analysis_provider
        or build_analysis_provider(settings, blobs),
        scheduler=analysis_runner,
        analysis_delay_sec=settings.analysis_delay_sec
        if analysis_delay_sec is None
        else analysis_delay_sec,
    )


_current = {
    "blob_store": default_blob_store,
    "batch_service": build_batch_service(),
}


def get_batch_service() -> BatchService:
    return _current["batch_service"]


def get_blob_store() -> BlobStore:
    return _current["blob_store"]


def get_analysis_runner() -> AnalysisRunner:
    return analysis_runner


def get_watched_folder_scanner() -> WatchedFolderScanner:
    return watched_folder_scanner


def use_batch_service(service: BatchService, blob_store: BlobStore | None = None) -> None:
    _current["batch_service"] = service
    _current["blob_store"] = blob_store or default_blob_store


def reset_state() -> None:
    analysis_runner.shutdown()
    db.clear()
    use_batch_service(build_batch_service())
