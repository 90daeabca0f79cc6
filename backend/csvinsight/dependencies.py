"""
Request-scoped wiring of the pipeline from the objects built at startup
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from csvinsight.database import get_db
from csvinsight.services.pipeline import AnalysisPipeline
from csvinsight.services.record_store import AnalysisRecordStore


def get_pipeline(request: Request, db: Session = Depends(get_db)) -> AnalysisPipeline:
    """Dependency for an AnalysisPipeline bound to this request's session"""
    state = request.app.state
    return AnalysisPipeline(
        store=AnalysisRecordStore(db, locks=state.topic_locks),
        blob_store=state.blob_store,
        ai_client=state.ai_client,
        settings=state.settings,
    )
