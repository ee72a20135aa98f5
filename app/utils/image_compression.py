import io

from PIL import Image, UnidentifiedImageError

from app.domain.exceptions import ImageDecodeError, ImageEncodeError


# Modes the JPEG encoder accepts without conversion
JPEG_MODES = {"L", "RGB", "CMYK"}


def compress_image(data: bytes, quality: int) -> bytes:
    """Decode ``data`` and re-encode it as a baseline JPEG at ``quality``.

    Pure and deterministic: the same bytes and quality always give the same
    output for a given Pillow build. Metadata (EXIF, ICC) is not carried over.
    """
    if not 1 <= quality <= 95:
        raise ValueError(f"quality must be between 1 and 95, got {quality}")

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(str(e))

    # Alpha is dropped, like any JPEG encoder would
    if img.mode not in JPEG_MODES:
        try:
            img = img.convert("RGB")
        except (OSError, ValueError) as e:
            raise ImageEncodeError(f"cannot convert {img.mode} to RGB: {e}")

    buf = io.BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality, optimize=False, progressive=False)
    except (OSError, ValueError, KeyError) as e:
        raise ImageEncodeError(str(e))
    return buf.getvalue()
