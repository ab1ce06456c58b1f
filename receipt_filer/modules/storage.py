"""
Storage Module
Folder/file interface the filer writes receipts through, plus the local backend

Two backends implement the same small interface:
- LocalStorage: a directory on disk, e.g. a Google Drive for Desktop folder
- DriveStorage (drive_storage.py): Google Drive through its API

Folder lookups always go through normalize_folder_name, so "February" and
"february " are the same folder. Typos still produce new folders.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..utils.sanitization import sanitize_for_logging

FOLDER_WHITESPACE_PATTERN = re.compile(r"\s+")

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage refuses an operation"""


def normalize_folder_name(name: str) -> str:
    """
    Key used to compare folder names

    Example:
        >>> normalize_folder_name("  February ")
        'february'
    """
    return FOLDER_WHITESPACE_PATTERN.sub(" ", name).strip().casefold()


@dataclass(frozen=True)
class StoredFile:
    """A file created by the filer"""
    name: str
    location: str


class Folder(ABC):
    """A folder that can hold receipts"""

    name: str

    @abstractmethod
    def file_exists(self, name: str) -> bool:
        """True if the folder already holds a file called ``name``"""

    @abstractmethod
    def create_file(self, name: str, data: bytes, mime_type: str = "application/pdf") -> StoredFile:
        """Create a new file; never overwrites"""


class Storage(ABC):
    """A folder tree; ``parent=None`` means the top level"""

    @abstractmethod
    def list_folders(self, parent: Optional[Folder] = None) -> List[Folder]:
        """Direct subfolders of ``parent``"""

    @abstractmethod
    def create_folder(self, name: str, parent: Optional[Folder] = None) -> Folder:
        """Create a subfolder of ``parent``"""


def get_or_create_folder(storage: Storage, name: str, parent: Optional[Folder] = None) -> Folder:
    """
    Find a subfolder by normalized name, creating it if there is none

    Args:
        storage: Backend to use
        name: Folder name as it should appear when created
        parent: Parent folder, None for the top level

    Returns:
        The existing or new folder
    """
    wanted = normalize_folder_name(name)
    for folder in storage.list_folders(parent):
        if normalize_folder_name(folder.name) == wanted:
            return folder

    clean_name = FOLDER_WHITESPACE_PATTERN.sub(" ", name).strip()
    logger.info(f"Creating folder {sanitize_for_logging(clean_name)}")
    return storage.create_folder(clean_name, parent)


def ensure_folder_path(storage: Storage, *names: str) -> Folder:
    """
    Get or create each folder of a path in turn

    Example:
        ensure_folder_path(storage, "Train Tickets", "2026", "February")
    """
    if not names:
        raise ValueError("ensure_folder_path needs at least one folder name")

    folder = None
    for name in names:
        folder = get_or_create_folder(storage, name, folder)
    return folder


def _check_plain_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise StorageError(f"Invalid file or folder name: {sanitize_for_logging(name)!r}")


class LocalFolder(Folder):
    """A directory on disk"""

    def __init__(self, path: Path):
        self.path = path
        self.name = path.name

    def file_exists(self, name: str) -> bool:
        return (self.path / name).exists()

    def create_file(self, name: str, data: bytes, mime_type: str = "application/pdf") -> StoredFile:
        _check_plain_name(name)
        target = self.path / name
        # "x" mode fails instead of overwriting
        with open(target, "xb") as handle:
            handle.write(data)
        return StoredFile(name=name, location=str(target))

    def __repr__(self) -> str:
        return f"LocalFolder({str(self.path)!r})"


class LocalStorage(Storage):
    """
    Folder tree rooted at a local directory

    Point it at a synced cloud folder to get the files into cloud storage.
    """

    def __init__(self, base_path):
        self.base_path = Path(base_path)
        if not self.base_path.is_dir():
            raise StorageError(f"Storage directory does not exist: {self.base_path}")

    def _path(self, parent: Optional[Folder]) -> Path:
        if parent is None:
            return self.base_path
        if not isinstance(parent, LocalFolder):
            raise StorageError(f"Not a local folder: {parent!r}")
        return parent.path

    def list_folders(self, parent: Optional[Folder] = None) -> List[Folder]:
        directory = self._path(parent)
        return [LocalFolder(child) for child in sorted(directory.iterdir()) if child.is_dir()]

    def create_folder(self, name: str, parent: Optional[Folder] = None) -> Folder:
        _check_plain_name(name)
        path = self._path(parent) / name
        path.mkdir(exist_ok=True)
        return LocalFolder(path)
