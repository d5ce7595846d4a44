"""
素材路由
素材库列表、删除和文件上传
"""
import io
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import Session

from mediagen.auth import get_current_user
from mediagen.config import get_settings
from mediagen.database import get_db
from mediagen.errors import (
    asset_not_found_error,
    file_too_large_error,
    forbidden_error,
    invalid_file_format_error,
    upload_failed_error,
)
from mediagen.models import Asset, User, generate_id
from mediagen.schemas import APIResponse, AssetListResponse, AssetResponse
from mediagen.services.storage import ObjectStorage, StorageError, generate_file_path, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["assets"])

settings = get_settings()


@router.get("/assets", response_model=AssetListResponse)
def list_assets(
    type: Optional[str] = Query(None, pattern="^(image|video)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """获取素材库，可按类型筛选"""
    query = db.query(Asset).filter(Asset.user_id == current_user.id)
    if type:
        query = query.filter(Asset.type == type)
    total = query.count()
    assets = query.order_by(Asset.created_at.desc()).offset(offset).limit(limit).all()
    return AssetListResponse(assets=assets, total=total)


@router.delete("/assets/{asset_id}", response_model=APIResponse)
def delete_asset(
    asset_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    删除素材

    - 存储文件删除失败不影响数据库记录删除
    """
    asset = db.query(Asset).filter(Asset.id == asset_id).first()
    if not asset:
        raise asset_not_found_error(asset_id)
    if asset.user_id != current_user.id:
        raise forbidden_error("无权删除该素材")

    if asset.file_path:
        try:
            storage.delete(asset.file_path)
        except StorageError as e:
            logger.warning(f"Failed to delete storage object for asset {asset_id}: {e}")

    db.delete(asset)
    db.commit()
    return APIResponse(success=True, message="Asset deleted")


@router.post("/upload", response_model=AssetResponse)
def upload_file(
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    上传图片或视频到素材库

    - 支持 JPG、PNG、GIF、WebP、MP4、MOV
    - 最大文件大小由 UPLOAD_MAX_MB 配置
    """
    content_type = file.content_type or ""
    if content_type not in settings.UPLOAD_ALLOWED_TYPES:
        raise invalid_file_format_error(content_type)

    content = file.file.read()
    size_mb = len(content) / 1024 / 1024
    if size_mb > settings.UPLOAD_MAX_MB:
        raise file_too_large_error(size_mb, settings.UPLOAD_MAX_MB)

    asset_type = "video" if content_type.startswith("video/") else "image"
    width = height = None
    if asset_type == "image":
        try:
            with Image.open(io.BytesIO(content)) as image:
                width, height = image.size
        except (UnidentifiedImageError, OSError):
            raise invalid_file_format_error(content_type)

    path = generate_file_path(current_user.id, file.filename or f"upload.{content_type.split('/')[-1]}")
    try:
        url = storage.put(path, content, content_type)
    except StorageError as e:
        logger.error(f"Upload for user {current_user.id} failed: {e}")
        raise upload_failed_error(str(e))

    asset = Asset(
        id=generate_id("asset"),
        user_id=current_user.id,
        type=asset_type,
        source="upload",
        filename=file.filename or os.path.basename(path),
        url=url,
        file_path=path,
        file_size=len(content),
        mime_type=content_type,
        width=width,
        height=height,
    )
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset
