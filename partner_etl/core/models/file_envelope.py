"""
FileEnvelope (file content plus routing metadata) and its queue token form.
"""

import base64
import binascii

from pydantic import BaseModel, Field, ValidationError

from partner_etl.core.errors import InvalidQueueMessage


def make_file_key(file_name: str, batch_id: str | None = None) -> str:
    """Status key of a file: batch-qualified when it belongs to a batch."""
    return f"{batch_id}/{file_name}" if batch_id else file_name


class FileEnvelope(BaseModel):
    """
    A file's byte content with the metadata that routes it through the pipeline.

    Attributes:
        file_name: Bare file name as uploaded
        batch_id: Owning batch, if the file came from a package
        job_id: Staging job id, assigned when rows are staged
        template_name: Explicit template override; derived from file_name otherwise
        content: Raw file bytes
        retry_count: Retries already spent on this file
        notification_override: Recipient replacing the default one
        blob_path: Where the file currently sits in blob storage
    """

    file_name: str = Field(..., min_length=1)
    batch_id: str | None = None
    job_id: str | None = None
    template_name: str | None = None
    content: bytes = b""
    retry_count: int = Field(0, ge=0)
    notification_override: str | None = None
    blob_path: str | None = None

    @property
    def file_key(self) -> str:
        return make_file_key(self.file_name, self.batch_id)

    def to_message(self, error_message: str | None = None) -> "QueueMessage":
        return QueueMessage(
            file_name=self.file_name,
            batch_id=self.batch_id,
            job_id=self.job_id,
            retry_count=self.retry_count,
            error_message=error_message,
            notification_override=self.notification_override,
            blob_path=self.blob_path,
            template_name=self.template_name,
        )


class QueueMessage(BaseModel):
    """Identifying fields of an envelope, carried through the queue as one token."""

    file_name: str = Field(..., min_length=1)
    batch_id: str | None = None
    job_id: str | None = None
    retry_count: int = Field(0, ge=0)
    error_message: str | None = None
    notification_override: str | None = None
    blob_path: str | None = None
    template_name: str | None = None

    def encode(self) -> str:
        payload = self.model_dump_json(exclude_none=True).encode("utf-8")
        return base64.urlsafe_b64encode(payload).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "QueueMessage":
        try:
            payload = base64.urlsafe_b64decode(token.encode("ascii"))
            return cls.model_validate_json(payload)
        except (binascii.Error, UnicodeError, ValidationError) as e:
            raise InvalidQueueMessage(f"Undecodable queue message: {e}") from e

    def with_retry(self, error_message: str) -> "QueueMessage":
        return self.model_copy(update={
            "retry_count": self.retry_count + 1,
            "error_message": error_message,
        })

    def to_envelope(self, content: bytes) -> FileEnvelope:
        return FileEnvelope(
            file_name=self.file_name,
            batch_id=self.batch_id,
            job_id=self.job_id,
            template_name=self.template_name,
            content=content,
            retry_count=self.retry_count,
            notification_override=self.notification_override,
            blob_path=self.blob_path,
        )
