"""FastAPI dependency injection factories."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from bodyscan_api.agents.llm import get_insight_llm
from bodyscan_api.core.config import Settings, get_settings
from bodyscan_api.db.mongo import MongoDB
from bodyscan_api.db.unit_of_work import UnitOfWork
from bodyscan_api.services.body_estimation import get_body_estimation_service
from bodyscan_api.services.photos import get_photo_fetcher
from bodyscan_api.services.pipeline import ScanPipeline
from bodyscan_api.services.stages import (
    BFEstimator,
    DeltaComparator,
    InsightWriter,
    MetaBinder,
    PrivacyPublisher,
    VisionQC,
)


def get_database() -> AsyncIOMotorDatabase:
    """
    Get the MongoDB database instance.

    Returns:
        Motor database instance
    """
    settings = get_settings()
    return MongoDB.get_database(settings.db_name)


def build_scan_pipeline(uow: UnitOfWork, settings: Settings) -> ScanPipeline:
    """
    Wire the pipeline stages to their stores and external services.

    Args:
        uow: Unit of Work over the application database
        settings: Application settings

    Returns:
        ScanPipeline ready to process scans
    """
    fetcher = get_photo_fetcher()
    return ScanPipeline.from_settings(
        settings,
        uow.scans,
        uow.day_context,
        uow.pipeline_runs,
        vision_qc=VisionQC.from_settings(fetcher, settings),
        bf_estimator=BFEstimator(get_body_estimation_service(), fetcher),
        meta_binder=MetaBinder(uow.day_context),
        delta_comparator=DeltaComparator(uow.scans),
        insight_writer=InsightWriter(get_insight_llm(settings)),
        privacy_publisher=PrivacyPublisher(uow.day_context),
    )


@lru_cache
def get_scan_pipeline() -> ScanPipeline:
    """
    Get the process-wide pipeline.

    Cached because the pipeline owns the registry of in-flight runs that
    lets concurrent requests for the same scan day share one run.

    Returns:
        ScanPipeline instance
    """
    settings = get_settings()
    return build_scan_pipeline(UnitOfWork(get_database()), settings)


# Type alias for service dependencies
ScanPipelineDep = Annotated[ScanPipeline, Depends(get_scan_pipeline)]
