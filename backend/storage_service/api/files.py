"""Files: store (multipart), exists, delete. Thin HTTP layer over the upload pipeline."""
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse, Response

from storage_service.api.schemas import ErrorResponse, ExistsResponse
from storage_service.core.config import get_settings
from storage_service.core.exceptions import (
    BlobNotFound,
    IngestError,
    PayloadTooLarge,
    ScanUnavailable,
    StorageReadFailed,
    StorageWriteFailed,
    ValidationFailed,
    VirusDetected,
)
from storage_service.models import StoredFile
from storage_service.services.blob_keys import build_key
from storage_service.services.pipeline import UploadPipeline, get_pipeline
from storage_service.services.upload_validation import (
    is_content_type_allowed,
    max_byte_size_for,
    sanitize_storage_filename,
    signature_validator,
)

router = APIRouter(prefix="/files", tags=["files"])

_DEFAULT_ORIGINAL_NAME = "upload.bin"

_STATUS_BY_ERROR = {
    PayloadTooLarge: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ValidationFailed: status.HTTP_422_UNPROCESSABLE_ENTITY,
    VirusDetected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ScanUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageWriteFailed: status.HTTP_502_BAD_GATEWAY,
    StorageReadFailed: status.HTTP_502_BAD_GATEWAY,
    BlobNotFound: status.HTTP_404_NOT_FOUND,
}


def _key_parts(category: str, file_name: str, original_file_name: str) -> tuple[str, str, str]:
    """Sanitize key parts exactly as store_file does, so lookups address the stored key."""
    safe_category = sanitize_storage_filename(category)
    safe_name = sanitize_storage_filename(file_name)
    if not safe_category or not safe_name:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="category and file_name are required",
        )
    return safe_category, safe_name, sanitize_storage_filename(original_file_name) or _DEFAULT_ORIGINAL_NAME


def _error_response(e: IngestError) -> JSONResponse:
    code = _STATUS_BY_ERROR.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    # VirusDetected message stays generic; the signature is only logged
    detail = "File did not pass security scan" if isinstance(e, VirusDetected) else e.message
    ctx = e.context()
    return JSONResponse(
        status_code=code,
        content=ErrorResponse(detail=detail, tracking_id=ctx["tracking_id"], stage=ctx["stage"]).model_dump(),
    )


@router.post(
    "",
    response_model=StoredFile,
    status_code=status.HTTP_201_CREATED,
    responses={code: {"model": ErrorResponse} for code in (413, 422, 502, 503)},
)
async def store_file(
    file: UploadFile = File(...),
    category: str = Form(...),
    user_id: str | None = Form(None),
    file_id: UUID | None = Form(None),
    tracking_id: UUID | None = Form(None),
    group_id: UUID | None = Form(None),
    file_name: str | None = Form(None),
    pipeline: UploadPipeline = Depends(get_pipeline),
):
    settings = get_settings()
    content_type = file.content_type or "application/octet-stream"
    if not is_content_type_allowed(content_type):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Content type not allowed: {content_type}",
        )
    safe_category = sanitize_storage_filename(category)
    if not safe_category:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="category is required")
    file_id = file_id or uuid4()
    original = sanitize_storage_filename(file.filename) or _DEFAULT_ORIGINAL_NAME
    validator = signature_validator(content_type) if settings.validate_signatures else None
    try:
        return await pipeline.store(
            user_id,
            file_id,
            tracking_id or uuid4(),
            group_id or uuid4(),
            safe_category,
            content_type,
            sanitize_storage_filename(file_name) or file_id.hex,
            original,
            file.file,
            max_size_bytes=max_byte_size_for(content_type),
            content_validator=validator,
        )
    except IngestError as e:
        return _error_response(e)
    finally:
        await file.close()


@router.get("/exists", response_model=ExistsResponse)
async def file_exists(
    category: str = Query(...),
    file_name: str = Query(...),
    original_file_name: str = Query(...),
    content_type: str | None = Query(None),
    pipeline: UploadPipeline = Depends(get_pipeline),
):
    category, file_name, original_file_name = _key_parts(category, file_name, original_file_name)
    found = await pipeline.exists(category, content_type, file_name, original_file_name)
    return ExistsResponse(
        blob_name=build_key(category, content_type, file_name, original_file_name),
        exists=found,
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT, responses={404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}})
async def delete_file(
    blob_name: str | None = Query(None),
    category: str | None = Query(None),
    file_name: str | None = Query(None),
    original_file_name: str | None = Query(None),
    content_type: str | None = Query(None),
    missing_ok: bool = Query(True),
    pipeline: UploadPipeline = Depends(get_pipeline),
):
    try:
        if blob_name:
            await pipeline.delete_blob(blob_name, missing_ok=missing_ok)
        elif category and file_name and original_file_name:
            category, file_name, original_file_name = _key_parts(category, file_name, original_file_name)
            await pipeline.delete_by_parts(
                category, content_type, file_name, original_file_name, missing_ok=missing_ok
            )
        else:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Provide blob_name or category, file_name and original_file_name",
            )
    except IngestError as e:
        return _error_response(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
