"""
TopicRecord model - a named angle of inquiry against an analysis
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from csvinsight.database import Base
from csvinsight.models._json import dump_json, load_json
from csvinsight.timeutil import utcnow


class TopicStatus(str, enum.Enum):
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    ERROR_INITIAL_ANALYSIS = "error_initial_analysis"
    ERROR_SERVER = "error_server"

    @property
    def is_error(self) -> bool:
        return self.value.startswith("error_")


class TopicRecord(Base):
    """Initial AI findings for one topic of an analysis"""
    
    __tablename__ = "analysis_topics"
    __table_args__ = (
        UniqueConstraint("analysis_id", "topic_id", name="uq_analysis_topic"),
    )
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    analysis_id = Column(String(36), ForeignKey("analyses.id"), nullable=False)
    topic_id = Column(String(255), nullable=False)  # Caller-supplied
    topic_display_name = Column(String(255), nullable=False)
    
    status = Column(String(50), nullable=False, default=TopicStatus.ANALYZING.value)
    
    # {initialFindings, thoughtProcess, questionSuggestions}, JSON text
    initial_analysis_result_json = Column(Text, nullable=True)
    initial_prompt_sent = Column(Text, nullable=True)  # Audit copy
    
    error_kind = Column(String(50), nullable=True)
    error = Column(Text, nullable=True)
    
    created_at = Column(DateTime, default=utcnow)
    last_updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    analysis = relationship("AnalysisRecord", back_populates="topics")
    messages = relationship(
        "ChatMessage",
        back_populates="topic",
        cascade="all, delete-orphan",
        order_by="ChatMessage.sequence_number",
    )
    
    @property
    def topic_status(self) -> TopicStatus:
        return TopicStatus(self.status)
    
    @property
    def initial_analysis_result(self):
        return load_json(self.initial_analysis_result_json)
    
    @initial_analysis_result.setter
    def initial_analysis_result(self, value):
        self.initial_analysis_result_json = dump_json(value)
    
    @property
    def last_error(self):
        if not self.error:
            return None
        return {"kind": self.error_kind, "message": self.error}
