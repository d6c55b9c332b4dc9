import base64
import io

from PIL import Image

from fieldtrack.media.preview import build_preview, data_uri, render_thumbnail


def image_bytes(size, mode="RGBA", fmt="PNG"):
    buffer = io.BytesIO()
    Image.new(mode, size).save(buffer, fmt)
    return buffer.getvalue()


def test_render_thumbnail_fits_bounding_box():
    thumbnail = render_thumbnail(image_bytes((1280, 640)))

    with Image.open(io.BytesIO(thumbnail)) as image:
        assert image.format == "JPEG"
        assert image.size == (320, 160)


def test_image_preview_is_jpeg_data_uri():
    preview = build_preview(image_bytes((100, 100)), "image/png")

    assert preview.startswith("data:image/jpeg;base64,")
    decoded = base64.b64decode(preview.split(",", 1)[1])
    with Image.open(io.BytesIO(decoded)) as image:
        assert image.mode == "RGB"


def test_unreadable_image_is_embedded_as_is():
    preview = build_preview(b"not an image", "image/png")
    assert preview == data_uri(b"not an image", "image/png")


def test_non_image_preview():
    assert build_preview(b"\x1aE\xdf\xa3", "audio/webm") == "data:audio/webm;base64,GkXfow=="
