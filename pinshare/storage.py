import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from werkzeug.datastructures import FileStorage

PIN_FORMAT = re.compile(r"^\d{6,8}$")
_FORBIDDEN_SEGMENTS = {"", ".", ".."}

storage_logger = logging.getLogger("pinshare.storage")


class InvalidPinError(ValueError):
    """Raised when a PIN cannot be used as a directory under the storage root."""


class InvalidFilenameError(ValueError):
    """Raised when an uploaded filename has no usable base name."""


def _is_single_segment(value: str) -> bool:
    if value in _FORBIDDEN_SEGMENTS:
        return False
    return not any(char in value for char in ("/", "\\", "\x00"))


def validate_pin(pin: str, enforce_format: bool = False) -> str:
    """Return *pin* unchanged or raise :class:`InvalidPinError`.

    Any single path segment is accepted unless *enforce_format* asks for the
    documented 6-8 digit form.
    """

    if not _is_single_segment(pin):
        raise InvalidPinError("Invalid PIN")
    if enforce_format and not PIN_FORMAT.match(pin):
        raise InvalidPinError("PIN must be 6-8 digits")
    return pin


def ensure_storage_root(root: Path) -> Path:
    if not root.exists():
        storage_logger.info("storage_root_created path=%s", root)
    root.mkdir(parents=True, exist_ok=True)
    return root


def _pin_path(root: Path, pin: str) -> Path:
    return root / validate_pin(pin)


def pin_directory(root: Path, pin: str) -> Path:
    """Return the directory for *pin*, creating it on first reference."""

    directory = _pin_path(root, pin)
    if not directory.is_dir():
        storage_logger.info("pin_directory_created pin=%s", pin)
        directory.mkdir(parents=True, exist_ok=True)
    return directory


def list_pin_files(root: Path, pin: str) -> List[Dict[str, object]]:
    """List the regular files stored under *pin* as name/size pairs.

    Order follows the filesystem enumeration. Entries that vanish or cannot be
    stat'ed while listing are skipped. Symlinks are reported as entries and
    never followed.
    """

    directory = pin_directory(root, pin)
    entries: List[Dict[str, object]] = []
    with os.scandir(directory) as iterator:
        for entry in iterator:
            try:
                if entry.is_dir(follow_symlinks=False):
                    continue
                size = entry.stat(follow_symlinks=False).st_size
            except OSError as error:
                storage_logger.warning(
                    "file_stat_failed pin=%s name=%s error=%s", pin, entry.name, error
                )
                continue
            entries.append({"name": entry.name, "size": size})
    return entries


def upload_basename(filename: str) -> str:
    """Strip every directory component from a client-supplied filename."""

    name = PurePosixPath((filename or "").replace("\\", "/")).name
    if name in _FORBIDDEN_SEGMENTS or "\x00" in name:
        raise InvalidFilenameError("Invalid filename")
    return name


def save_upload(root: Path, pin: str, file_storage: FileStorage) -> str:
    """Write an uploaded file into the PIN directory and return its stored name.

    An existing file with the same name is overwritten.
    """

    directory = pin_directory(root, pin)
    stored_name = upload_basename(file_storage.filename or "")
    file_storage.save(directory / stored_name)
    return stored_name


def resolve_download(root: Path, pin: str, filename: str) -> Optional[Path]:
    """Return the path of a stored file, or ``None`` when it does not exist."""

    if not _is_single_segment(filename):
        return None
    candidate = _pin_path(root, pin) / filename
    if not candidate.is_file():
        return None
    return candidate
