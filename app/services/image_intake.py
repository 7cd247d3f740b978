"""Turn user uploads into the encoded form the vision service accepts.

Images travel as ``data:image/<type>;base64,<payload>`` strings: that is
what the client sends, what the model receives and what history stores as
a preview.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import uuid
from dataclasses import dataclass, field

from PIL import Image, UnidentifiedImageError

from app.config import settings
from app.utils.exceptions import InputValidationError

logger = logging.getLogger(__name__)

# formats the vision model accepts
ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
}

_DATA_URI = re.compile(r"^data:(?P<mime>image/[a-zA-Z0-9.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


@dataclass(frozen=True)
class UploadedImage:
    data_uri: str
    image_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    filename: str | None = None


def parse_data_uri(value: str) -> str:
    """Validate an encoded image and return it in canonical data-URI form.

    Bare base64 (no ``data:`` prefix) is accepted and labelled as JPEG.
    """
    if not isinstance(value, str) or not value.strip():
        raise InputValidationError("비어 있는 이미지가 포함되어 있습니다.")

    value = value.strip()
    match = _DATA_URI.match(value)
    if match:
        mime, payload = match.group("mime").lower(), match.group("payload")
        if mime not in ALLOWED_IMAGE_TYPES:
            raise InputValidationError(f"지원하지 않는 이미지 형식입니다: {mime}")
        if mime == "image/jpg":
            mime = "image/jpeg"
    elif value.startswith("data:"):
        raise InputValidationError("이미지 형식의 데이터가 아닙니다.")
    else:
        mime, payload = "image/jpeg", value

    payload = "".join(payload.split())
    if not payload:
        raise InputValidationError("비어 있는 이미지가 포함되어 있습니다.")
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputValidationError("이미지 데이터를 해석할 수 없습니다.") from exc

    return f"data:{mime};base64,{payload}"


def compress_image(
    raw: bytes,
    max_dimension: int | None = None,
    quality: int | None = None,
) -> bytes:
    """Downscale so the longest side fits ``max_dimension`` and re-encode as JPEG.

    Aspect ratio is preserved and alpha is flattened against white.
    """
    max_dimension = max_dimension or settings.image_max_dimension
    quality = quality or settings.jpeg_quality

    try:
        src = Image.open(io.BytesIO(raw))
        src.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise InputValidationError("지원하지 않는 이미지 형식입니다.") from exc

    src = src.convert("RGBA")
    src.thumbnail((max_dimension, max_dimension), Image.LANCZOS)

    background = Image.new("RGB", src.size, (255, 255, 255))
    background.paste(src, mask=src.split()[3])

    out_io = io.BytesIO()
    background.save(out_io, format="JPEG", quality=quality, optimize=True)
    return out_io.getvalue()


def encode_upload(
    raw: bytes,
    content_type: str | None,
    filename: str | None = None,
    compress: bool | None = None,
) -> UploadedImage:
    """Encode one uploaded file, optionally compressing it first."""
    if not raw:
        raise InputValidationError(f"업로드된 파일이 비어 있습니다: {filename or '이름 없음'}")
    if len(raw) > settings.max_image_size_bytes:
        raise InputValidationError(
            f"파일 크기가 너무 큽니다: {filename or '이름 없음'} "
            f"(최대 {settings.max_image_size_bytes // (1024 * 1024)}MB)"
        )

    mime = (content_type or "").lower().split(";", 1)[0].strip()
    if mime not in ALLOWED_IMAGE_TYPES:
        raise InputValidationError(f"지원하지 않는 파일 형식입니다: {content_type or '알 수 없음'}")

    if compress is None:
        compress = settings.compress_uploads
    if compress:
        before = len(raw)
        raw = compress_image(raw)
        mime = "image/jpeg"
        logger.info("Compressed upload %s: %d -> %d bytes", filename, before, len(raw))

    payload = base64.b64encode(raw).decode("utf-8")
    return UploadedImage(data_uri=f"data:{mime};base64,{payload}", filename=filename)


def enforce_max_count(images: list, maximum: int | None = None) -> list:
    """Reject a batch larger than the configured maximum."""
    maximum = maximum or settings.max_images
    if len(images) > maximum:
        raise InputValidationError(f"이미지는 최대 {maximum}장까지 업로드할 수 있습니다.")
    return images
