"""
Shared fixtures: in-memory database, in-memory blob store and a scripted AI client
"""
import pytest
from fastapi.testclient import TestClient

from csvinsight.app import create_app
from csvinsight.config import Settings
from csvinsight.database import Base, build_engine, build_session_factory
from csvinsight.errors import StorageError
from csvinsight.services.ai_client import BaseAnalysisClient
from csvinsight.services.pipeline import AnalysisPipeline
from csvinsight.services.record_store import AnalysisRecordStore, TopicLocks
from csvinsight.services.storage import BlobStore


SUMMARY_TWO_COLUMNS = {
    "columns": [
        {"name": "A", "inferredType": "numeric", "stats": {"missingValues": 0}, "description": "First"},
        {"name": "B", "inferredType": "numeric", "stats": {"missingValues": 0}, "description": "Second"},
    ],
    "rowInsights": [],
    "generalObservations": ["Two numeric columns"],
    "potentialProblems": [],
}

TOPIC_RESULT = {
    "initialFindings": "Column B grows with column A.",
    "thoughtProcess": "- Compared A and B.\n- Checked the trend.",
    "questionSuggestions": ["Is the growth linear?", "Are there outliers?"],
}


def chat_response(question: str = "question") -> dict:
    return {
        "conciseChatMessage": f"Short answer to {question}",
        "detailedAnalysisBlock": {
            "questionAsked": question,
            "detailedFindings": "Details",
            "specificThoughtProcess": "Reasoning",
            "followUpSuggestions": ["Next?"],
        },
    }


class InMemoryBlobStore(BlobStore):
    def __init__(self):
        self.blobs = {}
        self.fail_writes = False

    def save(self, path, data, content_type="text/csv"):
        if self.fail_writes:
            raise StorageError(f"Failed to write {path} to storage: disk full")
        self.blobs[path] = bytes(data)

    def load(self, path):
        if path not in self.blobs:
            raise StorageError(f"Failed to read {path} from storage: not found")
        return self.blobs[path]


class FakeAnalysisClient(BaseAnalysisClient):
    """
    Returns queued responses in order; a queued exception is raised instead.
    Every call is recorded.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    @property
    def call_count(self):
        return len(self.calls)

    def generate(self, model, prompt, expect_json=False):
        self.calls.append({"model": model, "prompt": prompt.as_text(), "expect_json": expect_json})
        if not self.responses:
            raise AssertionError("FakeAnalysisClient called more times than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        use_mock_ai=False,
        gemini_api_key=None,
        storage_root=str(tmp_path / "storage"),
    )


@pytest.fixture
def db(settings):
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def store(db):
    return AnalysisRecordStore(db, locks=TopicLocks())


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def ai_client():
    return FakeAnalysisClient()


@pytest.fixture
def pipeline(store, blob_store, ai_client, settings):
    return AnalysisPipeline(store=store, blob_store=blob_store, ai_client=ai_client, settings=settings)


@pytest.fixture
def ready_analysis(pipeline, ai_client):
    """An analysis taken through the three ingestion phases"""
    upload = pipeline.initiate_upload("data.csv", b"A,B\n1,2\n,\n3,4\n", "Sales")
    ai_client.queue(SUMMARY_TWO_COLUMNS, "Two numeric measurements per row.")
    pipeline.generate_summary(upload["analysisId"], upload["csvContent"])
    pipeline.describe_and_finalize(upload["analysisId"])
    return upload["analysisId"]


@pytest.fixture
def app(settings, ai_client, blob_store):
    return create_app(settings=settings, ai_client=ai_client, blob_store=blob_store)


@pytest.fixture
def client(app):
    return TestClient(app)
