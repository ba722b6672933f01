from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import IO, Optional, Tuple
from urllib.parse import urlparse

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import safe_join

from mercadoboom.config import Config
from mercadoboom.observability import increment_counter

UPLOAD_ROUTE = "/api/objects/upload/"
UPLOADS_DIR = "uploads"
_CONTENT_TYPE_SUFFIX = ".content-type"


class ObjectStorageService:
    """
    Filesystem-backed object bucket.

    Private uploads live under ``<root>/uploads`` and are addressed as
    ``/objects/uploads/<id>``. Clients never write there directly: they ask
    for a signed, time-limited upload URL and ``PUT`` the bytes to it.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        secret_key: Optional[str] = None,
        app_url: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        public_paths: Optional[Tuple[str, ...]] = None,
    ) -> None:
        self.root = Path(root or Config.OBJECT_STORAGE_DIR)
        self.app_url = (app_url if app_url is not None else Config.APP_URL).rstrip("/")
        self.ttl_seconds = ttl_seconds or Config.UPLOAD_URL_TTL_SECONDS
        self.public_paths = public_paths or Config.PUBLIC_OBJECT_SEARCH_PATHS
        self.serializer = URLSafeTimedSerializer(secret_key or Config.SECRET_KEY, salt="object-upload")
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Upload URLs
    # ------------------------------------------------------------------
    def create_upload_url(self, owner_id: Optional[str] = None) -> str:
        token = self.serializer.dumps({"object_id": uuid.uuid4().hex, "owner": owner_id})
        return f"{self.app_url}{UPLOAD_ROUTE}{token}"

    def resolve_upload_token(self, token: str) -> Optional[str]:
        try:
            payload = self.serializer.loads(token, max_age=self.ttl_seconds)
        except SignatureExpired:
            self.logger.info("Expired upload URL presented")
            return None
        except BadSignature:
            self.logger.warning("Upload URL with invalid signature presented")
            return None
        return payload.get("object_id")

    def store_upload(self, object_id: str, stream: IO[bytes], content_type: Optional[str] = None) -> Optional[str]:
        """Write the body once; returns the normalized object path or None if it already exists."""
        target = self._upload_file(object_id)
        if target is None or target.exists():
            return None
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as handle:
            while True:
                chunk = stream.read(64 * 1024)
                if not chunk:
                    break
                handle.write(chunk)
        if content_type:
            target.with_name(target.name + _CONTENT_TYPE_SUFFIX).write_text(content_type, encoding="utf-8")
        increment_counter("objects_uploaded_total")
        return f"/objects/{UPLOADS_DIR}/{object_id}"

    # ------------------------------------------------------------------
    # Path handling
    # ------------------------------------------------------------------
    def normalize_object_path(self, raw_url: Optional[str]) -> Optional[str]:
        """Map an upload URL onto its ``/objects/...`` path; anything else is returned unchanged."""
        if not raw_url:
            return raw_url
        path = urlparse(raw_url).path if raw_url.startswith(("http://", "https://")) else raw_url
        if not path.startswith(UPLOAD_ROUTE):
            return raw_url
        token = path[len(UPLOAD_ROUTE):]
        try:
            payload = self.serializer.loads(token)
        except BadSignature:
            return raw_url
        return f"/objects/{UPLOADS_DIR}/{payload['object_id']}"

    def get_object_file(self, object_path: str) -> Optional[Tuple[Path, Optional[str]]]:
        """Resolve ``uploads/<id>`` (the part after ``/objects/``) to a file and its content type."""
        candidate = safe_join(str(self.root), object_path)
        if candidate is None:
            return None
        return self._existing(Path(candidate))

    def search_public_object(self, file_path: str) -> Optional[Tuple[Path, Optional[str]]]:
        for search_path in self.public_paths:
            directory = safe_join(str(self.root), search_path)
            if directory is None:
                continue
            candidate = safe_join(directory, file_path)
            if candidate is None:
                continue
            found = self._existing(Path(candidate))
            if found:
                return found
        return None

    def _upload_file(self, object_id: str) -> Optional[Path]:
        candidate = safe_join(str(self.root), UPLOADS_DIR, object_id)
        return Path(candidate) if candidate else None

    @staticmethod
    def _existing(path: Path) -> Optional[Tuple[Path, Optional[str]]]:
        if not path.is_file() or path.name.endswith(_CONTENT_TYPE_SUFFIX):
            return None
        sidecar = path.with_name(path.name + _CONTENT_TYPE_SUFFIX)
        content_type = sidecar.read_text(encoding="utf-8").strip() if sidecar.exists() else None
        return path, content_type
