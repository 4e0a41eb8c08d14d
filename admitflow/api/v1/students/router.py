from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from admitflow.core.exceptions import ServiceError
from admitflow.db.session import get_reconciliation, get_record_writer
from admitflow.db.writer import RecordWriter
from admitflow.sync.reconciliation import ReconciliationService

from . import service
from .schemas import (
    AttendanceMark,
    CommunicationCreate,
    CourseEnroll,
    DiscountUpdate,
    FeeCollect,
    InstallmentCreate,
    InstallmentResponse,
    StudentListResponse,
    StudentResponse,
    StudentStatusUpdate,
    StudentTransfer,
)

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.get("", response_model=StudentListResponse)
async def list_students(
    status_filter: Optional[str] = Query(None, alias="status", description="Current, Freeze, Concluded, NotCompleted, Suspended, Alumni"),
    course: Optional[str] = Query(None),
    batch: Optional[str] = Query(None),
    campus: Optional[str] = Query(None),
    payment: Optional[str] = Query(None, description="Paid, Overdue, Pending"),
    search: Optional[str] = Query(None, description="Name, email, phone or student id"),
    recon: ReconciliationService = Depends(get_reconciliation),
) -> StudentListResponse:
    return await service.list_students(
        recon,
        status_filter=status_filter,
        course=course,
        batch=batch,
        campus=campus,
        payment=payment,
        search=search,
    )


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
) -> StudentResponse:
    try:
        return await service.get_student(recon, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/status", response_model=StudentResponse)
async def change_status(
    student_id: str,
    payload: StudentStatusUpdate,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.change_status(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/attendance", response_model=StudentResponse)
async def mark_attendance(
    student_id: str,
    payload: AttendanceMark,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.mark_attendance(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/communications", response_model=StudentResponse)
async def add_communication(
    student_id: str,
    payload: CommunicationCreate,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.add_communication(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Fees -----

@router.post("/{student_id}/fees/installments", response_model=InstallmentResponse, status_code=status.HTTP_201_CREATED)
async def add_installment(
    student_id: str,
    payload: InstallmentCreate,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> InstallmentResponse:
    """At most 3; the 3rd takes the remaining discounted total."""
    try:
        return await service.add_installment(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/fees/discount", response_model=StudentResponse)
async def set_discount(
    student_id: str,
    payload: DiscountUpdate,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.set_discount(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/fees/collect", response_model=InstallmentResponse)
async def collect_fee(
    student_id: str,
    payload: FeeCollect,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> InstallmentResponse:
    try:
        return await service.collect_fee(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# ----- Placement -----

@router.post("/{student_id}/transfer", response_model=StudentResponse)
async def transfer_student(
    student_id: str,
    payload: StudentTransfer,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.transfer(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/{student_id}/courses", response_model=StudentResponse)
async def enroll_course(
    student_id: str,
    payload: CourseEnroll,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> StudentResponse:
    try:
        return await service.enroll_course(recon, writer, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(
    student_id: str,
    recon: ReconciliationService = Depends(get_reconciliation),
    writer: RecordWriter = Depends(get_record_writer),
) -> Response:
    try:
        await service.delete_student(recon, writer, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
