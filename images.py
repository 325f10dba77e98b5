"""
Product image upload and deletion against Cloudinary.

Uploads go straight to the unsigned upload endpoint with the configured
preset. Deletions need a signature computed here from the API secret, so the
secret never leaves the server.

Network and provider failures are retried a fixed number of times with a fixed
delay between attempts; when every attempt fails the caller gets a failure
result carrying the last error instead of an exception.
"""
import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import requests

from settings import Settings

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudinary.com/v1_1"


class ImageValidationError(ValueError):
    pass


class ImageServiceError(Exception):
    def __init__(self, message: str, code: str = "unknown"):
        super().__init__(message)
        self.code = code


class ImageConfigError(ImageServiceError):
    def __init__(self):
        super().__init__("Cloudinary is not properly configured", code="not_configured")


def validate_image(filename: str, content_type: Optional[str], size: int, max_bytes: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise ImageValidationError(f"{filename} is not an image")
    if size <= 0:
        raise ImageValidationError(f"{filename} is empty")
    if size > max_bytes:
        raise ImageValidationError(f"{filename} is larger than {max_bytes // (1024 * 1024)} MB")


def sanitize_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", filename)


def sign(params: dict, api_secret: str) -> str:
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return hashlib.sha1((to_sign + api_secret).encode()).hexdigest()


class CloudinaryClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def _url(self, action: str) -> str:
        return f"{API_BASE}/{self.settings.cloudinary_cloud_name}/image/{action}"

    @staticmethod
    def _json(resp) -> dict:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise ImageServiceError("Unexpected response from Cloudinary", code="bad_response")
        return body

    @staticmethod
    def _error_message(resp, default: str) -> str:
        try:
            body = resp.json()
        except ValueError:
            return default
        if not isinstance(body, dict):
            return default
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        return body.get("message") or default

    def upload(self, data: bytes, filename: str, content_type: str, folder: str, public_id: str,
               context: str = "") -> dict:
        if not self.settings.cloudinary_configured:
            raise ImageConfigError()
        resp = self.session.post(
            self._url("upload"),
            data={
                "upload_preset": self.settings.cloudinary_upload_preset,
                "folder": folder,
                "public_id": public_id,
                "context": context,
            },
            files={"file": (filename, data, content_type)},
            timeout=self.settings.http_timeout,
        )
        if not resp.ok:
            raise ImageServiceError(self._error_message(resp, "Failed to upload to Cloudinary"), code=str(resp.status_code))
        body = self._json(resp)
        if not body.get("secure_url") or not body.get("public_id"):
            raise ImageServiceError("Unexpected response from Cloudinary", code="bad_response")
        return {"secure_url": body["secure_url"], "public_id": body["public_id"]}

    def destroy(self, public_id: str) -> None:
        if not self.settings.cloudinary_configured:
            raise ImageConfigError()
        params = {"public_id": public_id, "timestamp": int(time.time())}
        resp = self.session.post(
            self._url("destroy"),
            data={
                **params,
                "api_key": self.settings.cloudinary_api_key,
                "signature": sign(params, self.settings.cloudinary_api_secret),
            },
            timeout=self.settings.http_timeout,
        )
        if not resp.ok:
            raise ImageServiceError(self._error_message(resp, "Failed to delete image"), code=str(resp.status_code))
        result = self._json(resp).get("result")
        if result != "ok":
            raise ImageServiceError(result or "Failed to delete image", code="not_deleted")


class FixedDelay:
    """Same pause before every retry."""

    def __init__(self, seconds: float):
        self.seconds = seconds

    def __call__(self, attempt: int) -> float:
        return self.seconds


@dataclass
class UploadResult:
    success: bool
    url: Optional[str] = None
    public_id: Optional[str] = None
    error: Optional[Exception] = None
    attempts: int = 0

    @property
    def error_code(self) -> Optional[str]:
        if self.error is None:
            return None
        return getattr(self.error, "code", "unknown")

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


@dataclass
class DeleteResult:
    success: bool
    error: Optional[Exception] = None
    attempts: int = 0


@dataclass
class BatchUploadResult:
    total_files: int
    results: List[UploadResult] = field(default_factory=list)

    @property
    def successful_uploads(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_uploads(self) -> int:
        return self.total_files - self.successful_uploads

    @property
    def success(self) -> bool:
        return self.successful_uploads > 0


RETRYABLE = (ImageServiceError, requests.RequestException)


class ImageUploader:
    def __init__(self, client, folder: str = "products", max_bytes: int = 5 * 1024 * 1024,
                 max_attempts: int = 3, backoff: Callable[[int], float] = FixedDelay(1.0),
                 sleep: Callable[[float], None] = time.sleep, clock: Callable[[], float] = time.time):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.client = client
        self.folder = folder
        self.max_bytes = max_bytes
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, client=None) -> "ImageUploader":
        return cls(
            client or CloudinaryClient(settings),
            folder=settings.cloudinary_folder,
            max_bytes=settings.image_max_bytes,
            max_attempts=settings.image_max_attempts,
            backoff=FixedDelay(settings.image_retry_delay),
        )

    def _attempt(self, label: str, op: Callable[[], object]) -> Tuple[Optional[object], Optional[Exception], int]:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return op(), None, attempt
            except ImageConfigError as e:
                logger.error("%s failed: %s", label, e)
                return None, e, attempt
            except RETRYABLE as e:
                last_error = e
                logger.warning("%s failed (attempt %d/%d): %s", label, attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    self.sleep(self.backoff(attempt))
        return None, last_error, self.max_attempts

    def upload(self, data: bytes, filename: str, content_type: Optional[str], owner_id: str) -> UploadResult:
        validate_image(filename, content_type, len(data), self.max_bytes)
        public_id = f"{int(self.clock() * 1000)}_{sanitize_filename(filename)}"
        folder = f"{self.folder}/{owner_id}"
        context = f"vendorId={owner_id}|originalName={filename}"
        logger.info("Uploading image %s for %s", public_id, owner_id)

        body, error, attempts = self._attempt(
            f"Upload of {public_id}",
            lambda: self.client.upload(data, filename, content_type, folder, public_id, context),
        )
        if error is not None:
            return UploadResult(success=False, error=error, attempts=attempts)
        return UploadResult(success=True, url=body["secure_url"], public_id=body["public_id"], attempts=attempts)

    def upload_many(self, files: Sequence[Tuple[bytes, str, Optional[str]]], owner_id: str,
                    on_progress: Optional[Callable[[float], None]] = None) -> BatchUploadResult:
        batch = BatchUploadResult(total_files=len(files))
        for done, (data, filename, content_type) in enumerate(files, start=1):
            try:
                result = self.upload(data, filename, content_type, owner_id)
            except ImageValidationError as e:
                result = UploadResult(success=False, error=e)
            if not result.success:
                logger.error("Error uploading file %s: %s", filename, result.error_message)
            batch.results.append(result)
            if on_progress:
                on_progress(done / len(files) * 100)
        return batch

    def delete(self, public_id: str) -> DeleteResult:
        if not public_id:
            return DeleteResult(success=False, error=ImageServiceError("Public ID is required", code="missing_id"))
        _, error, attempts = self._attempt(f"Delete of {public_id}", lambda: self.client.destroy(public_id))
        return DeleteResult(success=error is None, error=error, attempts=attempts)
