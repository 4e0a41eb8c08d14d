from fastapi import APIRouter, Depends, HTTPException, Response, status

from admitflow.api.v1.admissions.ingest import IngestGateway
from admitflow.core.exceptions import ServiceError
from admitflow.db.remote import RemoteStore
from admitflow.db.session import get_ingest_gateway, get_remote_store

from . import service
from .schemas import PublicApplicationCreate, PublicApplicationListResponse, PublicApplicationResponse

router = APIRouter(prefix="/api/public/applications", tags=["public"])


@router.post("", response_model=PublicApplicationResponse)
async def submit_application(
    payload: PublicApplicationCreate,
    response: Response,
    gateway: IngestGateway = Depends(get_ingest_gateway),
) -> PublicApplicationResponse:
    """Public form submission. 202 when only buffered locally."""
    try:
        result = await service.submit_application(gateway, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if result.item.pending_sync:
        response.status_code = status.HTTP_202_ACCEPTED
    return result


@router.get("", response_model=PublicApplicationListResponse)
async def list_applications(
    remote: RemoteStore = Depends(get_remote_store),
) -> PublicApplicationListResponse:
    try:
        return await service.list_applications(remote)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
