"""
AnalysisRecord model - one uploaded CSV file and everything derived from it
"""
import enum
import uuid

from sqlalchemy import Column, String, DateTime, Text, Integer
from sqlalchemy.orm import relationship

from csvinsight.database import Base
from csvinsight.models._json import dump_json, load_json
from csvinsight.timeutil import utcnow


class AnalysisStatus(str, enum.Enum):
    UPLOAD_COMPLETED = "upload_completed"
    SUMMARY_GENERATED = "summary_generated"
    READY_FOR_TOPIC_ANALYSIS = "ready_for_topic_analysis"

    ERROR_MISSING_RAW_PATH = "error_missing_raw_path"
    ERROR_PROCESSING_NO_DATA = "error_processing_no_data"
    ERROR_GENERATING_SUMMARY_AI = "error_generating_summary_ai"
    ERROR_GENERATING_SUMMARY_SERVER = "error_generating_summary_server"
    ERROR_GENERATING_DESCRIPTION_AI = "error_generating_description_ai"
    ERROR_FINALIZING_SERVER = "error_finalizing_server"

    @property
    def is_error(self) -> bool:
        return self.value.startswith("error_")


class AnalysisRecord(Base):
    """Represents an uploaded CSV and its processing state"""
    
    __tablename__ = "analyses"
    
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    analysis_name = Column(String(255), nullable=False)
    original_file_name = Column(String(255), nullable=False)
    
    # Blob storage references
    raw_csv_storage_path = Column(String(512), nullable=True)
    cleaned_csv_storage_path = Column(String(512), nullable=True)  # Set by the summary phase
    
    status = Column(String(50), nullable=False, default=AnalysisStatus.UPLOAD_COMPLETED.value)
    
    # Shape of the cleaned data
    row_count = Column(Integer, default=0)
    column_count = Column(Integer, default=0)
    
    # AI-derived context, JSON text
    data_summary_json = Column(Text, nullable=True)
    data_nature_description = Column(Text, nullable=True)
    small_dataset_raw_data_json = Column(Text, nullable=True)
    
    # Last error, kept apart from status
    error_kind = Column(String(50), nullable=True)
    error = Column(Text, nullable=True)
    
    created_at = Column(DateTime, default=utcnow)
    last_updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    
    # Relationships
    topics = relationship("TopicRecord", back_populates="analysis", cascade="all, delete-orphan")
    
    @property
    def analysis_status(self) -> AnalysisStatus:
        return AnalysisStatus(self.status)
    
    @property
    def data_summary(self):
        return load_json(self.data_summary_json)
    
    @data_summary.setter
    def data_summary(self, value):
        self.data_summary_json = dump_json(value)
    
    @property
    def small_dataset_raw_data(self):
        return load_json(self.small_dataset_raw_data_json)
    
    @small_dataset_raw_data.setter
    def small_dataset_raw_data(self, value):
        self.small_dataset_raw_data_json = dump_json(value)
    
    @property
    def last_error(self):
        if not self.error:
            return None
        return {"kind": self.error_kind, "message": self.error}
