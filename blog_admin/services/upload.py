"""
Image upload for post content and featured images
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from aiohttp import FormData

from ..client import HttpClient
from ..errors import ValidationError

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5MB
UPLOAD_TYPE = 'post-image'


class UploadService:
    """Validate locally, then POST multipart to /upload"""

    def __init__(self, client: HttpClient, max_size: int = MAX_IMAGE_SIZE):
        self.client = client
        self.max_size = max_size

    def _reject(self, message: str) -> ValidationError:
        self.client.notifier.error(message)
        return ValidationError(message, details={'errors': {'file': message}})

    def validate(self, content: bytes, content_type: str):
        if not content_type or not content_type.startswith('image/'):
            raise self._reject("Only image files can be uploaded")
        if len(content) > self.max_size:
            raise self._reject(f"Image size must not exceed {self.max_size // (1024 * 1024)}MB")

    async def upload_image(self, content: bytes, filename: str, content_type: str) -> str:
        """Upload a single image and return its URL"""
        self.validate(content, content_type)

        form = FormData()
        form.add_field('file', content, filename=filename, content_type=content_type)
        form.add_field('type', UPLOAD_TYPE)

        logger.debug(f"Uploading {filename} ({len(content)} bytes, {content_type})")
        payload = await self.client.post('/upload', form=form)
        url = payload.get('url') if isinstance(payload, dict) else payload
        logger.info(f"Uploaded {filename} -> {url}")
        return url

    async def upload_path(self, path: Union[str, Path]) -> str:
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
        content = await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)
        return await self.upload_image(content, path.name, content_type)

    async def upload_images(self, files: Iterable[Tuple[bytes, str, str]]) -> List[str]:
        """Upload (content, filename, content_type) triples concurrently"""
        return list(await asyncio.gather(*(self.upload_image(*f) for f in files)))
