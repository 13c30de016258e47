"""
Local blob storage for product and category images.

Files land under UPLOAD_DIR/<folder>/ and are served by the /uploads static
mount. The returned descriptor is all the catalog stores: url, provider_id
(the path relative to the upload root) and alt text.
"""

import logging
import os
import shutil
import tempfile
import uuid
from typing import Optional

from fastapi import UploadFile

import config
from errors import InvalidOperation
from schemas import ImageDescriptor

logger = logging.getLogger(__name__)


class LocalImageStorage:
    def __init__(self, root: str = config.UPLOAD_DIR, url_prefix: str = "/uploads"):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _path_for(self, provider_id: str) -> Optional[str]:
        path = os.path.abspath(os.path.join(self.root, provider_id))
        if os.path.commonpath([self.root, path]) != self.root:
            return None
        return path

    def save(self, upload: UploadFile, folder: str, alt: Optional[str] = None) -> dict:
        if not (upload.content_type or "").startswith("image/"):
            raise InvalidOperation(f"File {upload.filename} is not an image")

        ext = os.path.splitext(upload.filename or "")[1].lower()
        name = f"{uuid.uuid4().hex}{ext}"
        target_dir = os.path.join(self.root, folder)
        os.makedirs(target_dir, exist_ok=True)

        tmp = tempfile.NamedTemporaryFile(dir=target_dir, suffix=".part", delete=False)
        try:
            with tmp:
                shutil.copyfileobj(upload.file, tmp)
            os.replace(tmp.name, os.path.join(target_dir, name))
        finally:
            if os.path.exists(tmp.name):
                os.remove(tmp.name)

        provider_id = f"{folder}/{name}"
        logger.info("Stored image %s", provider_id)
        return ImageDescriptor(
            url=f"{self.url_prefix}/{provider_id}",
            provider_id=provider_id,
            alt=alt,
        ).model_dump()

    def delete(self, image: Optional[dict]) -> bool:
        if not image or not image.get("provider_id"):
            return False
        path = self._path_for(image["provider_id"])
        if path is None or not os.path.isfile(path):
            return False
        os.remove(path)
        logger.info("Removed image %s", image["provider_id"])
        return True


storage = LocalImageStorage()


def get_storage() -> LocalImageStorage:
    return storage
