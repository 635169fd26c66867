import mimetypes
import os
import uuid
from typing import Dict

from logging_config import logger
from services.exceptions import UpstreamError, ValidationError


class LocalBlobStore:
    """
    Object storage on the local disk.

    Keys are paths relative to ``root`` (``<folder>/<uuid><ext>``) and are
    served by the static files mount under ``url_prefix``.
    """

    def __init__(self, root: str, url_prefix: str):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix.rstrip("/")

    def _path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        if os.path.commonpath([self.root, path]) != self.root:
            raise ValidationError(f"Invalid blob key: {key}")
        return path

    async def upload(self, content: bytes, content_type: str, folder: str, filename: str = "") -> Dict[str, str]:
        extension = os.path.splitext(filename)[1] or mimetypes.guess_extension(content_type or "") or ""
        key = f"{folder}/{uuid.uuid4()}{extension}"
        path = self._path_for(key)

        logger.debug(f"Saving blob to: {path}")
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as buffer:
                buffer.write(content)
        except OSError as e:
            logger.error(f"Error saving blob {key}: {str(e)}")
            raise UpstreamError(f"Error saving file: {filename or key}") from e

        return {"url": f"{self.url_prefix}/{key}", "key": key, "content_type": content_type}

    async def delete(self, key: str) -> bool:
        try:
            os.remove(self._path_for(key))
        except (OSError, ValidationError) as e:
            logger.warning(f"Could not delete blob {key}: {str(e)}")
            return False
        logger.debug(f"Blob deleted: {key}")
        return True
