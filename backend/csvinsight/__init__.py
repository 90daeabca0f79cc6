"""
csvinsight package - CSV upload, AI summary and topic chat backend
"""
from csvinsight.database import Base
from csvinsight.models import AnalysisRecord, TopicRecord, ChatMessage

__all__ = ["Base", "AnalysisRecord", "TopicRecord", "ChatMessage"]
