"""
Services package for the photo gallery.

Contains the upload pipeline and its collaborators (file storage and
reverse geocoding), which don't fit cleanly into the repository pattern
(which is for data access).
"""

from app.services.image_ingest import ImageMetadata, ingest_image

__all__ = ["ImageMetadata", "ingest_image"]
