"""Error taxonomy for the upload pipeline.

Each error carries the HTTP status the API maps it to and a short machine
code, plus whatever context the client needs to recover (counts, paths).
"""
from typing import Any, Dict, Optional


class UploadError(Exception):
    """Base class for upload pipeline errors."""

    status_code: int = 500
    code: str = "upload_error"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.message = message
        self.stage = stage
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message

    def context(self) -> Dict[str, Any]:
        """Extra fields included in the API error body."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "error": self.code}
        if self.stage:
            body["stage"] = self.stage
        body.update(self.context())
        return body


class ValidationError(UploadError):
    """Missing or malformed input; the caller must fix the request."""

    status_code = 400
    code = "validation_error"


class SessionNotFound(UploadError):
    """No session for this upload id (never created, completed or cancelled)."""

    status_code = 404
    code = "session_not_found"

    def __init__(self, upload_id: str, stage: Optional[str] = None):
        self.upload_id = upload_id
        super().__init__(f"Upload session {upload_id} not found", stage=stage)

    def context(self) -> Dict[str, Any]:
        return {"uploadId": self.upload_id}


class SessionAlreadyExists(UploadError):
    status_code = 409
    code = "session_exists"

    def __init__(self, upload_id: str):
        self.upload_id = upload_id
        super().__init__(f"Upload session {upload_id} already exists")

    def context(self) -> Dict[str, Any]:
        return {"uploadId": self.upload_id}


class IncompleteUpload(UploadError):
    """Finalize attempted before every chunk is present."""

    status_code = 409
    code = "incomplete_upload"

    def __init__(self, upload_id: str, uploaded: int, expected: int, stage: Optional[str] = None):
        self.upload_id = upload_id
        self.uploaded = uploaded
        self.expected = expected
        super().__init__(
            f"Upload {upload_id} is incomplete: {uploaded}/{expected} chunks received",
            stage=stage,
        )

    def context(self) -> Dict[str, Any]:
        return {"uploadId": self.upload_id, "uploaded": self.uploaded, "expected": self.expected}


class AssemblyFailure(UploadError):
    """Concatenation failed, a chunk vanished mid-read, or the content hash did not match."""

    code = "assembly_failed"


class RegistryWriteFailure(UploadError):
    """Facility upsert failed after assembly. The artifact stays on disk."""

    code = "registry_write_failed"

    def __init__(self, message: str, artifact_path: str, stage: Optional[str] = None):
        self.artifact_path = artifact_path
        super().__init__(message, stage=stage)

    def context(self) -> Dict[str, Any]:
        return {"artifactPath": self.artifact_path}
