import logging
import os
import random
import re
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger("gallery.media")

SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]+$")


def generate_filename(original_filename: Optional[str]) -> str:
    """``<epoch-ms>-<random int><ext>``, keeping the uploaded file's extension."""
    ext = os.path.splitext(original_filename or "")[1]
    if not SAFE_EXTENSION.match(ext):
        ext = ""
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


class MediaStore:
    """Binary files kept in one directory under generated names."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def store(self, stream: BinaryIO, original_filename: Optional[str]) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        filename = generate_filename(original_filename)
        while (self.directory / filename).exists():
            filename = generate_filename(original_filename)
        target = self.directory / filename
        try:
            with open(target, "wb") as out:
                shutil.copyfileobj(stream, out)
        except BaseException:
            # never leave a partial upload behind
            target.unlink(missing_ok=True)
            raise
        return filename

    def path(self, filename: str) -> Path:
        return self.directory / filename

    def exists(self, filename: str) -> bool:
        return _is_safe(filename) and self.path(filename).is_file()

    def delete(self, filename: str) -> bool:
        if not self.exists(filename):
            return False
        try:
            self.path(filename).unlink()
            return True
        except OSError as e:
            logger.warning("Could not delete %s: %s", self.path(filename), e)
            return False


def _is_safe(filename: str) -> bool:
    return bool(filename) and filename not in (".", "..") and os.path.basename(filename) == filename and "\\" not in filename
