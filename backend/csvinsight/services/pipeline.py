"""
Analysis Pipeline
Runs the ingestion phases (upload, summarize, finalize) and the interactive
phases (initiate topic, chat turn) on top of the record store, blob storage
and the generative AI client.
"""
import codecs
import logging
import uuid
from pathlib import PurePath
from typing import Dict, Optional

from csvinsight.config import Settings
from csvinsight.errors import (
    AICallFailed,
    AIConfigurationError,
    AppError,
    InputValidationError,
    NotFoundError,
    UpstreamAIError,
)
from csvinsight.models import AnalysisRecord, AnalysisStatus, MessageRole, TopicStatus
from csvinsight.services import prompt_builder
from csvinsight.services.ai_client import BaseAnalysisClient, PlainText
from csvinsight.services.normalizer import CsvNormalizer, small_dataset_payload
from csvinsight.services.record_store import AnalysisRecordStore
from csvinsight.services.storage import BlobStore, cleaned_csv_path, raw_csv_path

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "uploaded_file.csv"

# Failures of the AI step itself, as opposed to server bugs
AI_FAILURES = (UpstreamAIError, AIConfigurationError)


def decode_csv_bytes(content: bytes) -> str:
    """
    Decode an uploaded file as UTF-8 (BOM tolerated)

    UTF-16 is accepted only with a byte order mark; anything else that is not
    valid UTF-8 is rejected rather than guessed at.
    """
    if content.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            return content.decode("utf-16")
        except UnicodeDecodeError:
            raise InputValidationError("Unable to decode file as UTF-16")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise InputValidationError("Unable to decode file: upload the CSV as UTF-8 text")


class AnalysisPipeline:
    """
    Orchestrates one analysis through its phases

    Phase 1: initiate_upload        -> upload_completed
    Phase 2: generate_summary       -> summary_generated
    Phase 3: describe_and_finalize  -> ready_for_topic_analysis
    Phase 4: initiate_topic_analysis (per topic, idempotent)
    Phase 5: chat_on_topic (per topic, appends a user and a model message)
    """

    def __init__(
        self,
        store: AnalysisRecordStore,
        blob_store: BlobStore,
        ai_client: BaseAnalysisClient,
        settings: Settings,
        normalizer: Optional[CsvNormalizer] = None,
    ):
        self.store = store
        self.blob_store = blob_store
        self.ai_client = ai_client
        self.settings = settings
        self.normalizer = normalizer or CsvNormalizer()

    @property
    def model(self) -> str:
        return self.settings.gemini_model

    def _generate(self, prompt: str, expect_json: bool = False):
        """Call the AI client; anything it raises surfaces as an AI error"""
        try:
            return self.ai_client.generate(self.model, PlainText(prompt), expect_json=expect_json)
        except AppError:
            raise
        except Exception as exc:
            logger.exception("AI client raised an unexpected error")
            raise AICallFailed(f"AI call failed: {exc}") from exc

    # Phase 1
    def initiate_upload(self, file_name: Optional[str], content: Optional[bytes], analysis_name: Optional[str]) -> Dict:
        if not content:
            raise InputValidationError("No CSV file uploaded.")
        if not analysis_name or not analysis_name.strip():
            raise InputValidationError("Analysis name is required and cannot be empty.")

        analysis_name = analysis_name.strip()
        original_file_name = PurePath(file_name or "").name or DEFAULT_FILE_NAME
        csv_content = decode_csv_bytes(content)

        analysis_id = str(uuid.uuid4())
        logger.info("Initiating upload for analysis: %s (ID: %s)", analysis_name, analysis_id)

        raw_path = raw_csv_path(analysis_id, original_file_name)
        self.blob_store.save(raw_path, content)
        logger.info("Raw CSV stored at: %s", raw_path)

        self.store.create_analysis(analysis_id, analysis_name, original_file_name, raw_path)
        logger.info("Initial analysis record created for ID: %s", analysis_id)

        return {
            "success": True,
            "analysisId": analysis_id,
            "analysisName": analysis_name,
            "originalFileName": original_file_name,
            "rawCsvStoragePath": raw_path,
            "csvContent": csv_content,
            "message": "File uploaded and initial record created successfully. Proceed to generate summary.",
        }

    # Phase 2
    def generate_summary(self, analysis_id: Optional[str], csv_content: Optional[str] = None) -> Dict:
        if not analysis_id:
            raise InputValidationError("analysisId is required.")

        record = self.store.get_analysis(analysis_id)
        self.store.require_status(record, AnalysisStatus.SUMMARY_GENERATED)
        logger.info("Generating summary for analysisId: %s", analysis_id)

        try:
            if csv_content is None:
                csv_content = self._load_raw_csv(record)

            try:
                normalized = self.normalizer.normalize(csv_content)
                if normalized.is_empty:
                    raise InputValidationError(
                        "CSV processing resulted in no usable data. The file might be empty or incorrectly formatted."
                    )
            except InputValidationError as exc:
                logger.warning("CSV processing for %s resulted in no usable data: %s", analysis_id, exc)
                self.store.fail_analysis(
                    record, AnalysisStatus.ERROR_PROCESSING_NO_DATA, exc, row_count=0, column_count=0
                )
                raise
            logger.info(
                "CSV preprocessed for %s: %d rows, %d columns",
                analysis_id, normalized.row_count, normalized.column_count,
            )

            sample = normalized.sample(self.settings.summary_sample_rows, self.settings.sample_cell_max_chars)
            prompt = prompt_builder.build_summary_prompt(
                normalized.cleaned_headers, normalized.row_count, normalized.column_count, sample
            )
            try:
                payload = self._generate(prompt, expect_json=True)
                summary = prompt_builder.parse_summary_response(payload)
            except AI_FAILURES as exc:
                logger.error("AI error during data summary generation for %s: %s", analysis_id, exc)
                self.store.fail_analysis(record, AnalysisStatus.ERROR_GENERATING_SUMMARY_AI, exc)
                raise exc.with_context("Failed to generate data summary with AI")
            logger.info("Data summary generated for %s", analysis_id)

            cleaned_path = cleaned_csv_path(analysis_id)
            self.blob_store.save(cleaned_path, normalized.to_csv().encode("utf-8"))
            logger.info("Cleaned CSV for %s stored at: %s", analysis_id, cleaned_path)

            small_data = small_dataset_payload(
                normalized.cleaned_rows,
                self.settings.small_dataset_max_cells,
                self.settings.small_dataset_max_bytes,
            )
            self.store.transition(
                record,
                AnalysisStatus.SUMMARY_GENERATED,
                cleaned_csv_storage_path=cleaned_path,
                data_summary=summary,
                row_count=normalized.row_count,
                column_count=normalized.column_count,
                small_dataset_raw_data=small_data,
            )
        except Exception as exc:
            self._record_server_error(
                record, AnalysisStatus.UPLOAD_COMPLETED, AnalysisStatus.ERROR_GENERATING_SUMMARY_SERVER, exc
            )
            raise

        return {
            "success": True,
            "analysisId": analysis_id,
            "dataSummaryForPrompts": summary,
            "rowCount": normalized.row_count,
            "columnCount": normalized.column_count,
            "message": "Data summary generated and analysis record updated successfully. Proceed to describe and finalize.",
        }

    def _load_raw_csv(self, record: AnalysisRecord) -> str:
        if not record.raw_csv_storage_path:
            logger.error("rawCsvStoragePath missing for analysis ID %s", record.id)
            error = InputValidationError(
                f"rawCsvStoragePath not found for analysis ID {record.id}. Cannot proceed."
            )
            self.store.fail_analysis(record, AnalysisStatus.ERROR_MISSING_RAW_PATH, error)
            raise error
        return decode_csv_bytes(self.blob_store.load(record.raw_csv_storage_path))

    # Phase 3
    def describe_and_finalize(self, analysis_id: Optional[str], summary_from_previous_step=None) -> Dict:
        if not analysis_id:
            raise InputValidationError("analysisId is required.")

        record = self.store.get_analysis(analysis_id)
        data_summary = record.data_summary or summary_from_previous_step
        if not data_summary:
            raise InputValidationError(f"Analysis {analysis_id} has no data summary to describe.")
        self.store.require_status(record, AnalysisStatus.READY_FOR_TOPIC_ANALYSIS)
        logger.info("Generating data nature description for analysis ID: %s", analysis_id)

        try:
            prompt = prompt_builder.build_nature_description_prompt(data_summary)
            try:
                text = self._generate(prompt)
                description = prompt_builder.parse_nature_description(text)
            except AI_FAILURES as exc:
                logger.error("AI error during data nature description for %s: %s", analysis_id, exc)
                self.store.fail_analysis(record, AnalysisStatus.ERROR_GENERATING_DESCRIPTION_AI, exc)
                raise exc.with_context("Failed to generate data nature description with AI")

            fields = {"data_nature_description": description}
            if not record.data_summary:
                fields["data_summary"] = data_summary
            self.store.transition(record, AnalysisStatus.READY_FOR_TOPIC_ANALYSIS, **fields)
        except Exception as exc:
            self._record_server_error(
                record, AnalysisStatus.SUMMARY_GENERATED, AnalysisStatus.ERROR_FINALIZING_SERVER, exc
            )
            raise

        logger.info("Analysis finalized and ready for topic analysis. ID: %s", analysis_id)
        return {
            "success": True,
            "analysisId": analysis_id,
            "analysisName": record.analysis_name,
            "originalFileName": record.original_file_name,
            "dataNatureDescription": description,
            "message": "Analysis created successfully and ready for topic analysis.",
        }

    def _record_server_error(
        self,
        record: AnalysisRecord,
        phase_status: AnalysisStatus,
        target: AnalysisStatus,
        exc: Exception,
    ) -> None:
        """Move a record still in ``phase_status`` to the server error ``target``"""
        try:
            self.store.db.rollback()
            if record.analysis_status is not phase_status:
                return
            logger.exception("Server error while processing analysis %s", record.id)
            self.store.fail_analysis(record, target, exc)
        except Exception:
            logger.exception("Failed to record status %s for analysis %s", target.value, record.id)

    # Phase 4
    def initiate_topic_analysis(
        self,
        analysis_id: Optional[str],
        topic_id: Optional[str],
        topic_display_name: Optional[str],
    ) -> Dict:
        if not analysis_id or not topic_id or not topic_display_name:
            raise InputValidationError("Missing required fields: analysisId, topicId, or topicDisplayName.")
        logger.info("Initiating topic analysis for analysisId: %s, topicId: %s", analysis_id, topic_id)

        record = self._analysis_with_context(analysis_id)

        with self.store.locks.hold(analysis_id, topic_id):
            existing = self.store.find_topic(analysis_id, topic_id)
            if existing is not None and existing.initial_analysis_result is not None:
                logger.info("Initial analysis for topic %s already exists. Returning stored result.", topic_id)
                return {
                    "success": True,
                    "data": existing.initial_analysis_result,
                    "message": "Initial analysis for this topic already existed.",
                }

            topic = self.store.start_topic(analysis_id, topic_id, topic_display_name)
            try:
                prompt = prompt_builder.build_topic_initial_prompt(
                    topic_display_name, record.data_nature_description, record.data_summary
                )
                self.store.record_topic_prompt(topic, prompt)

                try:
                    payload = self._generate(prompt, expect_json=True)
                    result = prompt_builder.parse_topic_initial_response(payload)
                except AI_FAILURES as exc:
                    logger.error("AI error during initial analysis of topic %s: %s", topic_id, exc)
                    self.store.fail_topic(topic, TopicStatus.ERROR_INITIAL_ANALYSIS, exc)
                    raise exc.with_context("Failed to generate initial analysis with AI")

                self.store.complete_topic(topic, result)
                self.store.append_message(
                    topic,
                    MessageRole.MODEL,
                    result["initialFindings"],
                    detailed_analysis_block={
                        "questionAsked": topic_display_name,
                        "detailedFindings": result["initialFindings"],
                        "specificThoughtProcess": result["thoughtProcess"],
                        "followUpSuggestions": result["questionSuggestions"],
                    },
                )
                self.store.touch_analysis(record)
            except Exception as exc:
                try:
                    self.store.db.rollback()
                    if topic.topic_status is TopicStatus.ANALYZING:
                        logger.exception("Server error during initial analysis of topic %s", topic_id)
                        self.store.fail_topic(topic, TopicStatus.ERROR_SERVER, exc)
                except Exception:
                    logger.exception("Failed to record error status for topic %s", topic_id)
                raise

        logger.info("Initial analysis for topic %s generated successfully", topic_id)
        return {
            "success": True,
            "data": result,
            "message": "Initial topic analysis completed successfully.",
        }

    # Phase 5
    def chat_on_topic(
        self,
        analysis_id: Optional[str],
        topic_id: Optional[str],
        user_message_text: Optional[str],
    ) -> Dict:
        if not analysis_id or not topic_id or user_message_text is None:
            raise InputValidationError("Missing required fields: analysisId, topicId, or userMessageText.")
        if not user_message_text.strip():
            raise InputValidationError("User message text cannot be empty.")
        logger.info("Chat message received for analysisId: %s, topicId: %s", analysis_id, topic_id)

        record = self._analysis_with_context(analysis_id)
        topic = self.store.get_topic(analysis_id, topic_id)

        with self.store.locks.hold(analysis_id, topic_id):
            self.store.append_message(topic, MessageRole.USER, user_message_text)
            history = [
                {"role": message.role, "parts": message.parts}
                for message in self.store.list_messages(topic)
            ]

            prompt = prompt_builder.build_chat_turn_prompt(
                topic.topic_display_name,
                record.data_nature_description,
                record.data_summary,
                history,
                user_message_text,
                analysis_name=record.analysis_name,
            )
            try:
                payload = self._generate(prompt, expect_json=True)
                response = prompt_builder.parse_chat_turn_response(payload)
            except AI_FAILURES as exc:
                logger.error("AI error during chat for topic %s: %s", topic_id, exc)
                self.store.record_topic_error(topic, exc)
                raise exc.with_context("Failed to get AI response")

            model_message = self.store.append_message(
                topic,
                MessageRole.MODEL,
                response["conciseChatMessage"],
                detailed_analysis_block=response["detailedAnalysisBlock"],
            )
            self.store.touch_topic(topic)
            self.store.touch_analysis(record)

        logger.info("Chat response stored for topic %s", topic_id)
        return {
            "success": True,
            "chatMessage": model_message.to_dict(),
            "detailedBlock": response["detailedAnalysisBlock"],
            "message": "AI response generated successfully.",
        }

    def _analysis_with_context(self, analysis_id: str) -> AnalysisRecord:
        """Fetch an analysis that has both prompt context fields"""
        record = self.store.get_analysis(analysis_id)
        if not record.data_summary or not record.data_nature_description:
            raise InputValidationError(
                "Analysis document is missing dataSummaryForPrompts or dataNatureDescription."
            )
        return record

    # Read side
    def list_analyses(self) -> Dict:
        return {
            "success": True,
            "analyses": [analysis_overview(record) for record in self.store.list_analyses()],
        }

    def get_analysis(self, analysis_id: str) -> Dict:
        record = self.store.get_analysis(analysis_id)
        data = analysis_overview(record)
        data.update({
            "rawCsvStoragePath": record.raw_csv_storage_path,
            "cleanedCsvStoragePath": record.cleaned_csv_storage_path,
            "dataSummaryForPrompts": record.data_summary,
            "smallDatasetRawData": record.small_dataset_raw_data,
            "lastError": record.last_error,
        })
        return {"success": True, "analysis": data}

    def get_topic_data(self, analysis_id: str, topic_id: str) -> Dict:
        self.store.get_analysis(analysis_id)
        topic = self.store.find_topic(analysis_id, topic_id)
        if topic is None:
            raise NotFoundError(f"Topic with ID {topic_id} not found for analysis {analysis_id}.")
        return {
            "success": True,
            "topicId": topic.topic_id,
            "topicDisplayName": topic.topic_display_name,
            "status": topic.status,
            "initialAnalysisResult": topic.initial_analysis_result,
            "lastError": topic.last_error,
            "chatHistory": [message.to_dict() for message in self.store.list_messages(topic)],
        }


def analysis_overview(record: AnalysisRecord) -> Dict:
    return {
        "analysisId": record.id,
        "analysisName": record.analysis_name,
        "originalFileName": record.original_file_name,
        "status": record.status,
        "rowCount": record.row_count,
        "columnCount": record.column_count,
        "dataNatureDescription": record.data_nature_description,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "lastUpdatedAt": record.last_updated_at.isoformat() if record.last_updated_at else None,
    }
