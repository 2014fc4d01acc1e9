# mailgate/core/uploads.py
from dataclasses import dataclass
from typing import List, Optional, Sequence

from fastapi import UploadFile
from loguru import logger

from mailgate.core import messages
from mailgate.core.config import settings
from mailgate.core.errors import AppError


@dataclass
class Attachment:
    filename: str
    content_type: str
    content: bytes


async def read_attachments(files: Optional[Sequence[UploadFile]], required: bool = False) -> List[Attachment]:
    """
    讀取 multipart 附件並檢查數量、型別、大小。
    超過數量 -> 27、型別不符 -> 23、太大 -> 24、讀取失敗 -> 25；
    required=True 且沒有附件 -> 22。
    """
    uploads = [f for f in (files or []) if f is not None and f.filename]
    if not uploads:
        if required:
            raise AppError(messages.FILE_NOT_FOUND, 400)
        return []
    if len(uploads) > settings.MAX_ATTACHMENT_COUNT:
        raise AppError(messages.MAX_FILE_COUNT_LIMIT, 400)

    attachments: List[Attachment] = []
    for upload in uploads:
        content_type = (upload.content_type or "").split(";")[0].strip().lower()
        if content_type not in settings.ALLOWED_ATTACHMENT_TYPES:
            raise AppError(messages.invalid_file_type(settings.ALLOWED_ATTACHMENT_TYPES), 400)
        try:
            content = await upload.read()
        except OSError as e:
            logger.warning("Unable to read attachment {}: {}", upload.filename, e)
            raise AppError(messages.FILE_UPLOAD_ERROR, 400) from e
        if len(content) > settings.max_attachment_bytes:
            raise AppError(messages.FILE_SIZE_LIMIT, 400)
        attachments.append(Attachment(filename=upload.filename, content_type=content_type, content=content))
    return attachments
