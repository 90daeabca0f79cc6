"""
ChatMessage model - one entry of a topic's append-only chat log
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, Text, Integer, ForeignKey
from sqlalchemy.orm import relationship

from csvinsight.database import Base
from csvinsight.models._json import dump_json, load_json
from csvinsight.timeutil import utcnow


class MessageRole(str, enum.Enum):
    USER = "user"
    MODEL = "model"


class ChatMessage(Base):
    """Represents a single user or model turn in a topic chat"""
    
    __tablename__ = "chat_messages"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    topic_record_id = Column(String(36), ForeignKey("analysis_topics.id"), nullable=False)
    
    role = Column(String(10), nullable=False)  # user, model
    parts_json = Column(Text, nullable=False)  # [{"text": ...}, ...]
    
    # Ordering: timestamp strictly increases within a topic
    timestamp = Column(DateTime, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    
    # Model messages only
    detailed_analysis_block_json = Column(Text, nullable=True)
    
    created_at = Column(DateTime, default=utcnow)
    
    # Relationships
    topic = relationship("TopicRecord", back_populates="messages")
    
    @property
    def parts(self):
        return load_json(self.parts_json)
    
    @parts.setter
    def parts(self, value):
        self.parts_json = dump_json(value)
    
    @property
    def detailed_analysis_block(self):
        return load_json(self.detailed_analysis_block_json)
    
    @detailed_analysis_block.setter
    def detailed_analysis_block(self, value):
        self.detailed_analysis_block_json = dump_json(value)
    
    @property
    def text(self) -> str:
        return "".join(part.get("text", "") for part in self.parts or [])
    
    def to_dict(self) -> dict:
        data = {
            "messageId": self.id,
            "role": self.role,
            "parts": self.parts,
            "timestamp": self.timestamp.isoformat(),
            "sequenceNumber": self.sequence_number,
        }
        if self.detailed_analysis_block is not None:
            data["detailedAnalysisBlock"] = self.detailed_analysis_block
        return data
