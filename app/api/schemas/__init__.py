"""
Pydantic schemas for API request/response validation.
"""

# Re-export schemas for convenient imports.
from .image import ImageAroundResponse as ImageAroundResponse
from .image import ImageDetailResponse as ImageDetailResponse
from .image import ImageListItem as ImageListItem
from .image import ImageListResponse as ImageListResponse
from .image import ImagePatch as ImagePatch
from .image import ImageResponse as ImageResponse
from .image import ImageUploadBatchResponse as ImageUploadBatchResponse
from .keyset_pagination import CursorDirection as CursorDirection
from .keyset_pagination import KeysetPaginatedResponse as KeysetPaginatedResponse
