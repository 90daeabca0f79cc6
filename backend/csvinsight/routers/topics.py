"""
Topics Router - topic analysis, chat turns and analysis lookups
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from csvinsight.dependencies import get_pipeline
from csvinsight.services.pipeline import AnalysisPipeline


router = APIRouter()


# Pydantic Schemas
class InitiateTopicRequest(BaseModel):
    analysisId: Optional[str] = None
    topicId: Optional[str] = None
    topicDisplayName: Optional[str] = None


class ChatOnTopicRequest(BaseModel):
    analysisId: Optional[str] = None
    topicId: Optional[str] = None
    userMessageText: Optional[str] = None


# Endpoints
@router.post("/initiate-topic-analysis")
def initiate_topic_analysis(
    body: InitiateTopicRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """
    Phase 4: initial AI findings for a topic
    
    Idempotent: a topic that already has findings returns them unchanged.
    """
    return pipeline.initiate_topic_analysis(body.analysisId, body.topicId, body.topicDisplayName)


@router.post("/chat-on-topic")
def chat_on_topic(
    body: ChatOnTopicRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Phase 5: one chat turn on a topic"""
    return pipeline.chat_on_topic(body.analysisId, body.topicId, body.userMessageText)


@router.get("/analyses")
def list_analyses(pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """List analyses, newest first"""
    return pipeline.list_analyses()


@router.get("/analyses/{analysis_id}")
def get_analysis(analysis_id: str, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    return pipeline.get_analysis(analysis_id)


@router.get("/analyses/{analysis_id}/topics/{topic_id}")
def get_topic(analysis_id: str, topic_id: str, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Topic findings with the full chat history"""
    return pipeline.get_topic_data(analysis_id, topic_id)
