"""
CSV Router - upload, summary and finalize phases of an analysis
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from csvinsight.dependencies import get_pipeline
from csvinsight.services.pipeline import AnalysisPipeline


router = APIRouter()


# Pydantic Schemas
class GenerateSummaryRequest(BaseModel):
    analysisId: Optional[str] = None
    csvContent: Optional[str] = None


class DescribeAndFinalizeRequest(BaseModel):
    analysisId: Optional[str] = None
    dataSummaryForPromptsFromPreviousStep: Optional[Any] = None


# Endpoints
@router.post("/csv/initiateUpload", status_code=201)
async def initiate_upload(
    csvFile: Optional[UploadFile] = File(None),
    analysisName: Optional[str] = Form(None),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """
    Phase 1: store the raw CSV and create the analysis record
    
    The decoded CSV text is returned so the client can send it back to
    the summary phase without another storage read.
    """
    content = await csvFile.read() if csvFile is not None else None
    filename = csvFile.filename if csvFile is not None else None
    return JSONResponse(
        status_code=201,
        content=pipeline.initiate_upload(filename, content, analysisName),
    )


@router.post("/csv/generateSummary")
def generate_summary(
    body: GenerateSummaryRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Phase 2: clean the CSV and generate the structured data summary"""
    return pipeline.generate_summary(body.analysisId, body.csvContent)


@router.post("/csv/describeAndFinalize")
def describe_and_finalize(
    body: DescribeAndFinalizeRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Phase 3: describe the nature of the data and finalize the record"""
    return pipeline.describe_and_finalize(
        body.analysisId, body.dataSummaryForPromptsFromPreviousStep
    )
