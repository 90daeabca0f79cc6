"""Services package initialization"""
from csvinsight.services.normalizer import CsvNormalizer
from csvinsight.services.ai_client import GeminiAnalysisClient, MockAnalysisClient
from csvinsight.services.storage import LocalBlobStore, S3BlobStore
from csvinsight.services.record_store import AnalysisRecordStore
from csvinsight.services.pipeline import AnalysisPipeline

__all__ = [
    "CsvNormalizer",
    "GeminiAnalysisClient",
    "MockAnalysisClient",
    "LocalBlobStore",
    "S3BlobStore",
    "AnalysisRecordStore",
    "AnalysisPipeline",
]
