"""Screenshot encoding: compress before sending to the Gemini API."""
from PIL import Image
import io
import base64
import re

DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def optimize_screenshot(screenshot_bytes: bytes, max_width: int = 1280, quality: int = 80) -> bytes:
    """
    Resize and compress a screenshot for API consumption.
    1920x1080 viewport → 1280x720 JPEG. Gemini reads it just as well
    and the request stays small.
    """
    img = Image.open(io.BytesIO(screenshot_bytes))

    # Resize if wider than max_width
    w, h = img.size
    if w > max_width:
        ratio = max_width / w
        img = img.resize((max_width, int(h * ratio)), Image.LANCZOS)

    # Convert RGBA to RGB (JPEG doesn't support alpha)
    if img.mode == 'RGBA':
        bg = Image.new('RGB', img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[3])
        img = bg
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=quality, optimize=True)
    return buf.getvalue()


def screenshot_to_data_url(screenshot_bytes: bytes, compress: bool = True,
                           max_width: int = 1280, quality: int = 80) -> str:
    """Screenshot bytes → ``data:image/jpeg;base64,...``."""
    if compress:
        screenshot_bytes = optimize_screenshot(screenshot_bytes, max_width=max_width, quality=quality)
    return "data:image/jpeg;base64," + base64.b64encode(screenshot_bytes).decode()


def data_url_to_bytes(data_url: str) -> bytes:
    """Inverse of screenshot_to_data_url. Bare base64 is accepted too."""
    return base64.b64decode(DATA_URL_PREFIX.sub("", data_url))
