"""Local previews for evidence media."""

import base64
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

PREVIEW_SIZE = (320, 320)


def data_uri(data: bytes, content_type: str) -> str:
    """Encode bytes as a data URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def render_thumbnail(data: bytes, size: tuple[int, int] = PREVIEW_SIZE) -> bytes:
    """
    Render a JPEG thumbnail of an image.

    Args:
        data: Raw image bytes (any format Pillow can open)
        size: Bounding box; aspect ratio is kept

    Returns:
        JPEG bytes

    Raises:
        UnidentifiedImageError: Bytes are not a readable image
    """
    with Image.open(io.BytesIO(data)) as image:
        # Respect camera orientation before shrinking
        image = ImageOps.exif_transpose(image)
        image.thumbnail(size)

        # JPEG has no alpha or palette
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        buffer = io.BytesIO()
        image.save(buffer, "JPEG", quality=80)
        return buffer.getvalue()


def build_preview(data: bytes, content_type: str) -> str:
    """
    Build a preview URL that can be shown before the upload finishes.

    Images become a thumbnail; anything else (or an unreadable image) is
    embedded as-is.

    Returns:
        data: URI
    """
    if content_type.startswith("image/"):
        try:
            return data_uri(render_thumbnail(data), "image/jpeg")
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not render thumbnail, embedding original: {e}")
    return data_uri(data, content_type)
