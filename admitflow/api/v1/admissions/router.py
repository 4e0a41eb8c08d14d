from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from admitflow.core.exceptions import ServiceError
from admitflow.db.session import get_ingest_gateway, get_reconciliation, get_record_writer
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import ReconciliationService

from . import service
from .ingest import IngestGateway
from .schemas import (
    AdmissionApprove,
    AdmissionListResponse,
    AdmissionReject,
    AdmissionRemarks,
    AdmissionResponse,
    AdmissionSubmission,
    AdmissionTransfer,
    IngestResponse,
    PromotionResponse,
    SyncSummary,
)

router = APIRouter(prefix="/api/v1/admissions", tags=["admissions"])


# ----- Ingest -----

@router.post(
    "",
    response_model=IngestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_admission(
    payload: AdmissionSubmission,
    response: Response,
    gateway: IngestGateway = Depends(get_ingest_gateway),
) -> IngestResponse:
    """Submit a new application. 202 when it was only buffered locally (pending sync)."""
    try:
        result = await service.ingest_admission(gateway, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if result.pending_sync:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.post("/sync", response_model=SyncSummary)
async def sync_admissions(
    gateway: IngestGateway = Depends(get_ingest_gateway),
    writer: RecordWriter = Depends(get_record_writer),
) -> SyncSummary:
    """Replay locally buffered submissions and edits against the remote store."""
    return await service.sync_admissions(gateway, writer)


# ----- Reads -----

@router.get("", response_model=AdmissionListResponse)
async def list_admissions(
    status_filter: Optional[str] = Query(None, alias="status", description="Pending, Verified, Rejected, Suspended, Cancelled"),
    course: Optional[str] = Query(None),
    campus: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Name, email, phone or id"),
    recon: ReconciliationService = Depends(get_reconciliation),
) -> AdmissionListResponse:
    """Merged admissions from every source, newest first."""
    return await service.list_admissions(recon, status_filter=status_filter, course=course, campus=campus, search=search)


@router.get("/{admission_id}", response_model=AdmissionResponse)
async def get_admission(
    admission_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
) -> AdmissionResponse:
    try:
        return await service.get_admission(recon, admission_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Lifecycle -----

@router.post("/{admission_id}/approve", response_model=PromotionResponse)
async def approve_admission(
    admission_id: str,
    payload: AdmissionApprove,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> PromotionResponse:
    """Verify the admission and create the Student. Approving twice creates no second Student."""
    try:
        return await service.approve_admission(recon, writer, admission_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{admission_id}/reject", response_model=AdmissionResponse)
async def reject_admission(
    admission_id: str,
    payload: AdmissionReject,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> AdmissionResponse:
    """Reject with a mandatory reason."""
    try:
        return await service.reject_admission(recon, writer, admission_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{admission_id}/suspend", response_model=AdmissionResponse)
async def suspend_admission(
    admission_id: str,
    payload: AdmissionRemarks,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> AdmissionResponse:
    try:
        return await service.suspend_admission(recon, writer, admission_id, payload.remarks)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{admission_id}/cancel", response_model=AdmissionResponse)
async def cancel_admission(
    admission_id: str,
    payload: AdmissionRemarks,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> AdmissionResponse:
    try:
        return await service.cancel_admission(recon, writer, admission_id, payload.remarks)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{admission_id}/transfer", response_model=AdmissionResponse)
async def transfer_admission(
    admission_id: str,
    payload: AdmissionTransfer,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> AdmissionResponse:
    """Move to another batch and/or campus."""
    try:
        return await service.transfer_admission(recon, writer, admission_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{admission_id}/mark-paid", response_model=AdmissionResponse)
async def mark_admission_paid(
    admission_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> AdmissionResponse:
    """Mark every unpaid installment as paid now."""
    try:
        return await service.mark_admission_paid(recon, writer, admission_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{admission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_admission(
    admission_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> Response:
    try:
        await service.delete_admission(recon, writer, admission_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
