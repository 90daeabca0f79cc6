"""
Analysis Record Store
Persists analyses, topics and chat logs and guards their status transitions
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from csvinsight.errors import AppError, NotFoundError, StateTransitionError
from csvinsight.models import (
    AnalysisRecord,
    AnalysisStatus,
    ChatMessage,
    MessageRole,
    TopicRecord,
    TopicStatus,
)
from csvinsight.timeutil import utcnow

logger = logging.getLogger(__name__)


# Forward-only; error states are absorbing
ANALYSIS_TRANSITIONS: Dict[AnalysisStatus, Tuple[AnalysisStatus, ...]] = {
    AnalysisStatus.UPLOAD_COMPLETED: (
        AnalysisStatus.SUMMARY_GENERATED,
        AnalysisStatus.ERROR_MISSING_RAW_PATH,
        AnalysisStatus.ERROR_PROCESSING_NO_DATA,
        AnalysisStatus.ERROR_GENERATING_SUMMARY_AI,
        AnalysisStatus.ERROR_GENERATING_SUMMARY_SERVER,
    ),
    AnalysisStatus.SUMMARY_GENERATED: (
        AnalysisStatus.READY_FOR_TOPIC_ANALYSIS,
        AnalysisStatus.ERROR_GENERATING_DESCRIPTION_AI,
        AnalysisStatus.ERROR_FINALIZING_SERVER,
    ),
    AnalysisStatus.READY_FOR_TOPIC_ANALYSIS: (),
}

TOPIC_TRANSITIONS: Dict[TopicStatus, Tuple[TopicStatus, ...]] = {
    TopicStatus.ANALYZING: (
        TopicStatus.COMPLETED,
        TopicStatus.ERROR_INITIAL_ANALYSIS,
        TopicStatus.ERROR_SERVER,
    ),
    TopicStatus.COMPLETED: (),
    # Re-initiating a failed topic starts it over
    TopicStatus.ERROR_INITIAL_ANALYSIS: (TopicStatus.ANALYZING,),
    TopicStatus.ERROR_SERVER: (TopicStatus.ANALYZING,),
}

MESSAGE_TICK = timedelta(microseconds=1)


def can_transition(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    return target in ANALYSIS_TRANSITIONS.get(current, ())


def can_transition_topic(current: TopicStatus, target: TopicStatus) -> bool:
    return target in TOPIC_TRANSITIONS.get(current, ())


class TopicLocks:
    """
    In-process locks keyed by (analysis_id, topic_id)

    A lock lives only while some caller holds or waits on it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, analysis_id: str, topic_id: str):
        key = (analysis_id, topic_id)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
        with lock:
            yield


class AnalysisRecordStore:
    """
    Document store for the analysis pipeline

    Every mutation commits immediately so the next request (or a polling
    client) observes it.
    """

    def __init__(self, db: Session, locks: Optional[TopicLocks] = None):
        self.db = db
        self.locks = locks or TopicLocks()

    # Analyses
    def create_analysis(
        self,
        analysis_id: str,
        analysis_name: str,
        original_file_name: str,
        raw_csv_storage_path: str,
    ) -> AnalysisRecord:
        now = utcnow()
        record = AnalysisRecord(
            id=analysis_id,
            analysis_name=analysis_name,
            original_file_name=original_file_name,
            raw_csv_storage_path=raw_csv_storage_path,
            status=AnalysisStatus.UPLOAD_COMPLETED.value,
            created_at=now,
            last_updated_at=now,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_analysis(self, analysis_id: str) -> AnalysisRecord:
        record = self.db.get(AnalysisRecord, analysis_id) if analysis_id else None
        if record is None:
            raise NotFoundError(f"Analysis record for ID {analysis_id} not found.")
        return record

    def list_analyses(self, skip: int = 0, limit: int = 50) -> List[AnalysisRecord]:
        return self.db.query(AnalysisRecord)\
            .order_by(AnalysisRecord.created_at.desc())\
            .offset(skip)\
            .limit(limit)\
            .all()

    def require_status(self, record: AnalysisRecord, target: AnalysisStatus) -> None:
        """Raise StateTransitionError unless ``record`` may move to ``target``"""
        current = record.analysis_status
        if not can_transition(current, target):
            raise StateTransitionError(
                f"Analysis {record.id} is in status '{current.value}' and cannot move to '{target.value}'."
            )

    def transition(self, record: AnalysisRecord, target: AnalysisStatus, **fields) -> AnalysisRecord:
        """Move ``record`` forward to ``target``, applying ``fields`` in the same commit"""
        self.require_status(record, target)
        for name, value in fields.items():
            setattr(record, name, value)
        record.status = target.value
        if not target.is_error:
            record.error = None
            record.error_kind = None
        record.last_updated_at = utcnow()
        self.db.commit()
        logger.info("Analysis %s -> %s", record.id, target.value)
        return record

    def fail_analysis(self, record: AnalysisRecord, target: AnalysisStatus, error: Exception, **fields) -> AnalysisRecord:
        """Record ``error`` and move ``record`` into the error state ``target``"""
        kind = error.kind if isinstance(error, AppError) else "SERVER_ERROR"
        return self.transition(record, target, error=str(error), error_kind=kind, **fields)

    def touch_analysis(self, record: AnalysisRecord) -> None:
        record.last_updated_at = utcnow()
        self.db.commit()

    # Topics
    def find_topic(self, analysis_id: str, topic_id: str) -> Optional[TopicRecord]:
        return self.db.query(TopicRecord)\
            .filter(TopicRecord.analysis_id == analysis_id, TopicRecord.topic_id == topic_id)\
            .first()

    def get_topic(self, analysis_id: str, topic_id: str) -> TopicRecord:
        topic = self.find_topic(analysis_id, topic_id)
        if topic is None:
            raise NotFoundError(f"Topic with ID {topic_id} not found for analysis {analysis_id}.")
        return topic

    def start_topic(self, analysis_id: str, topic_id: str, topic_display_name: str) -> TopicRecord:
        """Create the topic, or restart a failed one, in status 'analyzing'"""
        now = utcnow()
        topic = self.find_topic(analysis_id, topic_id)
        if topic is None:
            topic = TopicRecord(
                analysis_id=analysis_id,
                topic_id=topic_id,
                topic_display_name=topic_display_name,
                status=TopicStatus.ANALYZING.value,
                created_at=now,
                last_updated_at=now,
            )
            self.db.add(topic)
        else:
            current = topic.topic_status
            if current is not TopicStatus.ANALYZING and not can_transition_topic(current, TopicStatus.ANALYZING):
                raise StateTransitionError(
                    f"Topic {topic_id} is in status '{current.value}' and cannot be restarted."
                )
            topic.topic_display_name = topic_display_name
            topic.status = TopicStatus.ANALYZING.value
            topic.error = None
            topic.error_kind = None
            topic.last_updated_at = now
        self.db.commit()
        self.db.refresh(topic)
        return topic

    def record_topic_prompt(self, topic: TopicRecord, prompt: str) -> None:
        topic.initial_prompt_sent = prompt
        topic.last_updated_at = utcnow()
        self.db.commit()

    def complete_topic(self, topic: TopicRecord, result: Dict) -> TopicRecord:
        self._move_topic(topic, TopicStatus.COMPLETED)
        topic.initial_analysis_result = result
        self.db.commit()
        return topic

    def fail_topic(self, topic: TopicRecord, target: TopicStatus, error: Exception) -> TopicRecord:
        self._move_topic(topic, target)
        self.record_topic_error(topic, error)
        return topic

    def record_topic_error(self, topic: TopicRecord, error: Exception) -> None:
        """Set the topic's last error without changing its status"""
        topic.error = str(error)
        topic.error_kind = error.kind if isinstance(error, AppError) else "SERVER_ERROR"
        topic.last_updated_at = utcnow()
        self.db.commit()

    def touch_topic(self, topic: TopicRecord) -> None:
        topic.last_updated_at = utcnow()
        self.db.commit()

    def _move_topic(self, topic: TopicRecord, target: TopicStatus) -> None:
        current = topic.topic_status
        if not can_transition_topic(current, target):
            raise StateTransitionError(
                f"Topic {topic.topic_id} is in status '{current.value}' and cannot move to '{target.value}'."
            )
        topic.status = target.value
        topic.last_updated_at = utcnow()
        logger.info("Topic %s/%s -> %s", topic.analysis_id, topic.topic_id, target.value)

    # Chat log
    def list_messages(self, topic: TopicRecord) -> List[ChatMessage]:
        return self.db.query(ChatMessage)\
            .filter(ChatMessage.topic_record_id == topic.id)\
            .order_by(ChatMessage.timestamp, ChatMessage.sequence_number)\
            .all()

    def append_message(
        self,
        topic: TopicRecord,
        role: MessageRole,
        text: str,
        detailed_analysis_block: Optional[Dict] = None,
    ) -> ChatMessage:
        """Append a message whose timestamp is later than every earlier one in the topic"""
        last_timestamp, last_sequence = self.db.query(
            func.max(ChatMessage.timestamp), func.max(ChatMessage.sequence_number)
        ).filter(ChatMessage.topic_record_id == topic.id).one()

        timestamp = utcnow()
        if last_timestamp is not None and timestamp <= last_timestamp:
            timestamp = last_timestamp + MESSAGE_TICK

        message = ChatMessage(
            topic_record_id=topic.id,
            role=role.value,
            timestamp=timestamp,
            sequence_number=(last_sequence or 0) + 1,
        )
        message.parts = [{"text": text}]
        if detailed_analysis_block is not None:
            message.detailed_analysis_block = detailed_analysis_block
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message
