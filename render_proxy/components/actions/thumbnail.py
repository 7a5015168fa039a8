"""
Screenshot thumbnailing with Pillow.
"""
import io

from PIL import Image

from render_proxy.core.exceptions import ActionError

PIL_FORMATS = {"png": "PNG", "jpeg": "JPEG"}


def make_thumbnail(image_bytes: bytes, thumb_width: int, image_type: str = "png", quality: int = 90) -> bytes:
    """
    Re-encodes an image at `thumb_width` pixels wide, keeping its aspect ratio.

    Args:
        image_bytes (bytes): PNG or JPEG data.
        thumb_width (int): Target width in pixels.
        image_type (str): "png" or "jpeg"; the output encoding.
        quality (int): JPEG quality (1-100). PNG output is lossless.

    Raises:
        ActionError: If the image cannot be decoded or encoded.
    """
    if thumb_width < 1:
        raise ActionError("screenshot", f"Invalid thumbnail width: {thumb_width}")
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            thumb_height = max(1, round(image.height * thumb_width / image.width))
            thumbnail = image.resize((thumb_width, thumb_height), Image.Resampling.LANCZOS)

        output = io.BytesIO()
        if image_type == "jpeg":
            thumbnail.convert("RGB").save(output, format=PIL_FORMATS["jpeg"], quality=quality)
        else:
            thumbnail.save(output, format=PIL_FORMATS["png"])
        return output.getvalue()
    except (OSError, ValueError) as e:
        raise ActionError("screenshot", f"Failed to create thumbnail: {e}")
