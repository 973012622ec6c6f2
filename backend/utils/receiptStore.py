import logging
import os
import uuid
from datetime import datetime
from io import BytesIO
from typing import Optional

from dotenv import load_dotenv
from PIL import Image, UnidentifiedImageError

from utils.ledgerErrors import ValidationError

# Configure module logger
logger = logging.getLogger(__name__)


class ReceiptStore:
    """
    Class storing receipt images referenced by expenses

    Uploaded images are shrunk to fit RECEIPT_MAX_SIZE and re-encoded
    before being written under RECEIPT_DIR. The returned reference is the
    stored file path, which is what Expense.receipt holds.
    """

    def __init__(self, directory: Optional[str] = None, maxSize: Optional[int] = None, quality: int = 85):
        load_dotenv()
        self.directory = directory or os.getenv("RECEIPT_DIR", "receipts")
        size = maxSize or int(os.getenv("RECEIPT_MAX_SIZE", "1000"))
        self.maxSize = (size, size)
        self.quality = quality

    def save(self, content: bytes) -> str:
        """
        Optimize and store a receipt image

        Args:
            content: Raw uploaded bytes

        Returns:
            str: Reference to the stored receipt

        Raises:
            ValidationError: If the content is not a readable image
        """
        if not content:
            raise ValidationError("Receipt upload is empty")

        try:
            image = Image.open(BytesIO(content))
            image.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            logger.warning(f"Rejected receipt upload: {str(e)}")
            raise ValidationError("Receipt is not a readable image") from e

        # PNG stays lossless, everything else becomes JPEG
        fmt = "PNG" if image.format == "PNG" else "JPEG"

        # Resize if needed (preserving aspect ratio)
        if image.width > self.maxSize[0] or image.height > self.maxSize[1]:
            image.thumbnail(self.maxSize, Image.LANCZOS)
        if fmt == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")

        os.makedirs(self.directory, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        extension = ".png" if fmt == "PNG" else ".jpg"
        path = os.path.join(self.directory, f"receipt_{timestamp}_{uuid.uuid4().hex[:8]}{extension}")

        image.save(path, format=fmt, quality=self.quality, optimize=True)
        logger.info(f"Stored receipt {path} ({image.width}x{image.height})")
        return path

    def delete(self, reference: str) -> bool:
        """
        Remove a stored receipt

        References outside the receipt directory are never touched.

        Returns:
            bool: True if a file was removed
        """
        root = os.path.abspath(self.directory)
        path = os.path.abspath(reference)
        if os.path.commonpath([root, path]) != root:
            logger.warning(f"Refusing to delete receipt outside {root}: {reference}")
            return False
        if not os.path.exists(path):
            return False
        os.remove(path)
        logger.debug(f"Deleted receipt file: {path}")
        return True
