"""Models package initialization"""
from csvinsight.models.analysis import AnalysisRecord, AnalysisStatus
from csvinsight.models.topic import TopicRecord, TopicStatus
from csvinsight.models.message import ChatMessage, MessageRole

__all__ = [
    "AnalysisRecord",
    "AnalysisStatus",
    "TopicRecord",
    "TopicStatus",
    "ChatMessage",
    "MessageRole",
]
