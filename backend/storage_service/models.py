"""Stored file entity returned by the upload pipeline."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Property names recorded on every StoredFile, in this order
STORAGE_TYPE_PROPERTY = "StorageType"
BLOB_NAME_PROPERTY = "BlobName"
CONTAINER_NAME_PROPERTY = "ContainerName"


class FileProperty(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: str


class StoredFile(BaseModel):
    """Immutable record of a committed upload. Only built after every gate passed and the blob was written."""

    model_config = ConfigDict(frozen=True)

    file_id: UUID
    tracking_id: UUID
    group_id: UUID
    user_id: str | None = None
    category: str
    content_type: str | None = None
    file_name: str
    original_file_name: str
    size_bytes: int = Field(ge=0)
    uri: str
    # Ordered (insertion order); names conventionally unique
    properties: tuple[FileProperty, ...] = ()
    created_at: datetime

    def get_property(self, name: str) -> str | None:
        for prop in self.properties:
            if prop.name == name:
                return prop.value
        return None
