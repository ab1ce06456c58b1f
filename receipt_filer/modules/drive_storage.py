"""
Google Drive Storage Module
Storage backend that writes receipts straight into Google Drive (API v3)

Authorization uses an OAuth installed-app flow: the first run opens a browser
window, later runs reuse and refresh the saved token.

Requirements: google-auth, google-auth-oauthlib, google-api-python-client
"""

import io
import logging
import os
from typing import List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from .storage import Folder, Storage, StorageError, StoredFile
from ..utils.sanitization import sanitize_for_logging

# Full Drive access: the receipt tree may already exist, created by hand or by
# another tool, and drive.file only shows files this app created itself.
SCOPES = ['https://www.googleapis.com/auth/drive']
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
ROOT_FOLDER_ID = "root"


def escape_query_value(value: str) -> str:
    """
    Escape a value for a single-quoted Drive query string

    Example:
        >>> escape_query_value("Bob's tickets")
        "Bob\\\\'s tickets"
    """
    return value.replace("\\", "\\\\").replace("'", "\\'")


def load_credentials(credentials_file: str, token_file: str) -> Credentials:
    """
    Load, refresh or obtain OAuth credentials for Drive

    Args:
        credentials_file: OAuth client secrets downloaded from Google Cloud Console
        token_file: Where the authorized token is cached

    Returns:
        Valid credentials

    Raises:
        StorageError: If no token exists and there is no client secrets file
    """
    logger = logging.getLogger("DriveStorage")
    creds = None

    if os.path.exists(token_file):
        # Loaded with the scopes recorded in the token, so has_scopes sees what was granted
        creds = Credentials.from_authorized_user_file(token_file)
        if not creds.has_scopes(SCOPES):
            logger.info("Cached Drive token lacks the required scope; re-authorizing")
            creds = None

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        logger.info("Refreshing Drive credentials")
        creds.refresh(Request())
    else:
        if not os.path.exists(credentials_file):
            raise StorageError(
                f"Drive credentials file not found: {credentials_file}. "
                "Download OAuth client credentials from Google Cloud Console."
            )
        logger.info("Starting OAuth flow for Google Drive")
        flow = InstalledAppFlow.from_client_secrets_file(credentials_file, SCOPES)
        creds = flow.run_local_server(port=0)

    with open(token_file, 'w') as token:
        token.write(creds.to_json())
    os.chmod(token_file, 0o600)
    logger.info(f"Drive credentials saved: {token_file}")
    return creds


class DriveFolder(Folder):
    """A Drive folder, identified by its file id"""

    def __init__(self, service, folder_id: str, name: str):
        self.service = service
        self.folder_id = folder_id
        self.name = name

    def file_exists(self, name: str) -> bool:
        query = (
            f"'{self.folder_id}' in parents and name = '{escape_query_value(name)}' "
            f"and trashed = false"
        )
        try:
            response = self.service.files().list(
                q=query,
                fields="files(id)",
                pageSize=1,
                spaces="drive",
            ).execute()
        except HttpError as e:
            raise StorageError(f"Drive lookup failed in {self.name}: {e}") from e
        return bool(response.get("files"))

    def create_file(self, name: str, data: bytes, mime_type: str = "application/pdf") -> StoredFile:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        try:
            created = self.service.files().create(
                body={"name": name, "parents": [self.folder_id]},
                media_body=media,
                fields="id, name",
            ).execute()
        except HttpError as e:
            raise StorageError(f"Drive upload failed for {name}: {e}") from e
        return StoredFile(name=created.get("name", name), location=f"drive:{created['id']}")

    def __repr__(self) -> str:
        return f"DriveFolder({self.name!r}, id={self.folder_id!r})"


class DriveStorage(Storage):
    """
    Folder tree in Google Drive, rooted at "My Drive"

    Folder calls let HttpError through, which stops the sweep. File calls
    (DriveFolder) turn it into StorageError, handled per receipt.
    """

    def __init__(self, service):
        """
        Args:
            service: Drive v3 service from googleapiclient.discovery.build
        """
        self.service = service
        self.logger = logging.getLogger("DriveStorage")

    @classmethod
    def from_files(cls, credentials_file: str, token_file: str) -> "DriveStorage":
        creds = load_credentials(credentials_file, token_file)
        service = build('drive', 'v3', credentials=creds, cache_discovery=False)
        return cls(service)

    def _parent_id(self, parent: Optional[Folder]) -> str:
        if parent is None:
            return ROOT_FOLDER_ID
        if not isinstance(parent, DriveFolder):
            raise StorageError(f"Not a Drive folder: {parent!r}")
        return parent.folder_id

    def list_folders(self, parent: Optional[Folder] = None) -> List[Folder]:
        parent_id = self._parent_id(parent)
        query = (
            f"'{parent_id}' in parents and mimeType = '{FOLDER_MIME_TYPE}' "
            f"and trashed = false"
        )

        folders: List[Folder] = []
        page_token = None
        while True:
            response = self.service.files().list(
                q=query,
                fields="nextPageToken, files(id, name)",
                spaces="drive",
                pageToken=page_token,
            ).execute()
            for item in response.get("files", []):
                folders.append(DriveFolder(self.service, item["id"], item["name"]))
            page_token = response.get("nextPageToken")
            if not page_token:
                return folders

    def create_folder(self, name: str, parent: Optional[Folder] = None) -> Folder:
        created = self.service.files().create(
            body={
                "name": name,
                "mimeType": FOLDER_MIME_TYPE,
                "parents": [self._parent_id(parent)],
            },
            fields="id, name",
        ).execute()
        self.logger.debug(f"Created Drive folder {sanitize_for_logging(name)} ({created['id']})")
        return DriveFolder(self.service, created["id"], created.get("name", name))
