import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel
from sqlalchemy.orm import Session

from clinicflow.api.auth import get_current_user
from clinicflow.config import settings
from clinicflow.database.connection import get_db
from clinicflow.database.models import UploadedFile, User
from clinicflow.errors import StorageError, ValidationError
from clinicflow.services.storage import UploadPayload, get_file_storage, validate_upload

router = APIRouter(prefix="/api/upload", tags=["File Upload"])
logger = logging.getLogger(__name__)

# ==================== CONFIG ====================

FILE_CATEGORIES = {
    "prescription": "prescriptions",
    "report": "reports",
    "general": "general"
}

# ==================== HELPER FUNCTIONS ====================

async def read_upload(file: Optional[UploadFile]) -> Optional[UploadPayload]:
    """Read an optional multipart file into memory"""
    if file is None or not file.filename:
        return None
    content = await file.read()
    await file.close()
    return UploadPayload(content=content, filename=file.filename, content_type=file.content_type)


def save_to_database(
    db: Session,
    user_id: int,
    payload: UploadPayload,
    stored,
    category: str
) -> UploadedFile:
    """
    Save file metadata to database
    """
    uploaded_file = UploadedFile(
        user_id=user_id,
        filename=payload.filename,
        storage_id=stored.storage_id,
        file_url=stored.url,
        thumbnail_url=stored.thumbnail_url,
        file_size=stored.size,
        content_type=payload.content_type,
        category=category
    )

    db.add(uploaded_file)
    db.commit()
    db.refresh(uploaded_file)

    return uploaded_file

# ==================== PYDANTIC MODELS ====================

class MultipleUploadResponse(BaseModel):
    status: str
    message: str
    uploaded: List[dict]
    failed: List[dict]

# ==================== API ENDPOINTS ====================

@router.post("/files", response_model=MultipleUploadResponse)
async def upload_files(
    files: List[UploadFile] = File(...),
    category: str = Form("general"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage=Depends(get_file_storage)
):
    """
    Upload up to 10 images / PDFs at once.

    Each file is validated and stored independently; one bad file does
    not reject the others.
    """
    if category not in FILE_CATEGORIES:
        raise ValidationError(f"Unknown category: {category}")
    if len(files) > 10:
        raise ValidationError("At most 10 files per upload")

    uploaded = []
    failed = []

    for file in files:
        payload = await read_upload(file)
        try:
            if payload is None:
                raise ValidationError("No file uploaded")
            payload.filename = validate_upload(payload, settings.MAX_UPLOAD_BYTES)
            stored = storage.store(payload.content, payload.filename, FILE_CATEGORIES[category])
        except (ValidationError, StorageError) as e:
            logger.warning(f"Upload of {file.filename} rejected: {e.detail}")
            failed.append({"filename": file.filename, "error": e.detail})
            continue

        record = save_to_database(db, current_user.id, payload, stored, category)
        uploaded.append({
            "id": record.id,
            "filename": record.filename,
            "url": record.file_url,
            "thumbnail_url": record.thumbnail_url,
            "storage_id": record.storage_id,
            "size": record.file_size
        })

    return MultipleUploadResponse(
        status="partial" if failed else "success",
        message=f"Uploaded {len(uploaded)} files, failed {len(failed)}",
        uploaded=uploaded,
        failed=failed
    )


@router.get("/files", response_model=dict)
async def get_user_files(
    category: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    query = db.query(UploadedFile).filter(UploadedFile.user_id == current_user.id)
    if category:
        query = query.filter(UploadedFile.category == category)

    files = query.order_by(UploadedFile.created_at.desc()).all()

    return {
        "total": len(files),
        "files": [
            {
                "id": f.id,
                "filename": f.filename,
                "url": f.file_url,
                "thumbnail_url": f.thumbnail_url,
                "category": f.category,
                "size": f.file_size,
                "uploaded_at": f.created_at.strftime("%Y-%m-%d %I:%M %p")
            }
            for f in files
        ]
    }
