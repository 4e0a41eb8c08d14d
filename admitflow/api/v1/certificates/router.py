from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from admitflow.core.exceptions import ServiceError
from admitflow.db.local_buffer import LocalBuffer
from admitflow.db.remote import RemoteStore
from admitflow.db.session import get_local_buffer, get_remote_store

from . import service
from .schemas import (
    CertificateCreate,
    CertificateDeleteResponse,
    CertificateListResponse,
    CertificateResponse,
    CertificateStatusUpdate,
)

router = APIRouter(prefix="/api/certificates", tags=["certificates"])


@router.post("", response_model=CertificateResponse, status_code=status.HTTP_201_CREATED)
async def request_certificate(
    payload: CertificateCreate,
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> CertificateResponse:
    try:
        return await service.create_certificate(remote, local, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    status_filter: Optional[str] = Query(None, alias="status"),
    student_id: Optional[str] = Query(None, alias="studentId"),
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> CertificateListResponse:
    return await service.list_certificates(remote, local, status_filter=status_filter, student_id=student_id)


@router.post("/sync")
async def sync_certificates(
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> dict:
    """Write locally pending certificate requests through to the remote table."""
    return await service.sync_certificates(remote, local)


@router.get("/{certificate_id}", response_model=CertificateResponse)
async def get_certificate(
    certificate_id: str,
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> CertificateResponse:
    try:
        return CertificateResponse(item=await service.get_certificate(remote, local, certificate_id))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{certificate_id}", response_model=CertificateResponse)
async def update_certificate_status(
    certificate_id: str,
    payload: CertificateStatusUpdate,
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> CertificateResponse:
    """Move along the flow; stamps the matching timestamp and appends to status history."""
    try:
        return await service.update_status(remote, local, certificate_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{certificate_id}", response_model=CertificateDeleteResponse)
async def delete_certificate(
    certificate_id: str,
    remote: RemoteStore = Depends(get_remote_store),
    local: LocalBuffer = Depends(get_local_buffer),
) -> CertificateDeleteResponse:
    try:
        removed = await service.delete_certificate(remote, local, certificate_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return CertificateDeleteResponse(removed_id=removed)
