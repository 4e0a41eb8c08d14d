from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from admitflow.core.exceptions import ServiceError
from admitflow.core.schemas import EnquiryRecord
from admitflow.db.session import get_reconciliation, get_record_writer
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import ReconciliationService

from . import service
from .importer import read_enquiries_upload
from .schemas import (
    EnquiryConvert,
    EnquiryConvertResponse,
    EnquiryCreate,
    EnquiryFollowUp,
    EnquiryImportResult,
    EnquiryListResponse,
    EnquiryStageUpdate,
)

router = APIRouter(prefix="/api/v1/enquiries", tags=["enquiries"])


@router.post("", response_model=EnquiryRecord, status_code=status.HTTP_201_CREATED)
async def create_enquiry(
    payload: EnquiryCreate,
    response: Response,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryRecord:
    """Create an enquiry. 202 when it was only buffered locally."""
    try:
        record = await service.create_enquiry(recon, writer, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if record.pending_sync:
        response.status_code = status.HTTP_202_ACCEPTED
    return record


@router.post("/import", response_model=EnquiryImportResult)
async def import_enquiries(
    file: UploadFile = File(..., description="Excel (.xlsx) with columns: name, course, contact, email, city, source"),
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryImportResult:
    """Bulk import. Rows missing name, course or contact are skipped and reported."""
    try:
        rows, skipped = await read_enquiries_upload(file)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await service.import_enquiries(recon, writer, rows, skipped)


@router.get("", response_model=EnquiryListResponse)
async def list_enquiries(
    status_filter: Optional[str] = Query(None, alias="status", description="Pending, Enrolled, NotInterested"),
    stage: Optional[str] = Query(None),
    course: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Name, contact, email or id"),
    recon: ReconciliationService = Depends(get_reconciliation),
) -> EnquiryListResponse:
    return await service.list_enquiries(recon, status_filter=status_filter, stage=stage, course=course, search=search)


@router.get("/{enquiry_id}", response_model=EnquiryRecord)
async def get_enquiry(
    enquiry_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
) -> EnquiryRecord:
    try:
        return await service.get_enquiry(recon, enquiry_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{enquiry_id}/follow-up", response_model=EnquiryRecord)
async def record_follow_up(
    enquiry_id: str,
    payload: EnquiryFollowUp,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryRecord:
    try:
        return await service.record_follow_up(recon, writer, enquiry_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{enquiry_id}/stage", response_model=EnquiryRecord)
async def set_stage(
    enquiry_id: str,
    payload: EnquiryStageUpdate,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryRecord:
    """Set the stage, or advance to the next one when none is given."""
    try:
        return await service.set_stage(recon, writer, enquiry_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{enquiry_id}/convert", response_model=EnquiryConvertResponse)
async def convert_enquiry(
    enquiry_id: str,
    payload: EnquiryConvert,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryConvertResponse:
    try:
        return await service.convert(recon, writer, enquiry_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{enquiry_id}/not-interested", response_model=EnquiryRecord)
async def mark_not_interested(
    enquiry_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> EnquiryRecord:
    try:
        return await service.not_interested(recon, writer, enquiry_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{enquiry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_enquiry(
    enquiry_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> Response:
    try:
        await service.delete_enquiry(recon, writer, enquiry_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
