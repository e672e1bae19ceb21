import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from uploadnest.models import UploadSource

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# --- files ---

class FileRecordCreate(BaseModel):
    user_id: uuid.UUID
    original_name: str
    storage_key: str
    mime_type: str
    size_bytes: int = Field(ge=1)
    extension: str
    upload_source: UploadSource

class UploadResult(CamelModel):
    file_id: uuid.UUID
    original_name: str
    size: int
    ext: str
    mime_type: str

class UploadResponse(CamelModel):
    message: str
    data: List[UploadResult]
    failed_count: int

class FileRecordView(CamelModel):
    id: uuid.UUID
    original_name: str
    mime_type: str
    size: int
    formatted_size: str
    ext: str
    upload_via: UploadSource
    url: str
    created_at: datetime
    updated_at: datetime

class Pagination(CamelModel):
    page_size: int
    page_number: int
    total_count: int
    total_pages: int
    skip: int

class FileListResponse(CamelModel):
    message: str
    files: List[FileRecordView]
    pagination: Pagination

class FileIdsRequest(CamelModel):
    file_ids: List[uuid.UUID] = Field(min_length=1)

class DeleteResult(CamelModel):
    deleted_count: int
    failed_count: int

class DeleteFilesResponse(DeleteResult):
    message: str

class DownloadResult(CamelModel):
    url: str
    is_zip: bool

class DownloadFilesResponse(CamelModel):
    message: str
    download_url: str
    is_zip: bool

# --- storage ---

class StorageMetrics(CamelModel):
    quota: int
    usage: int
    remaining: int

class UploadValidation(CamelModel):
    allowed: bool
    new_usage: int
    remaining_after_upload: int

# --- auth ---

class RegisterRequest(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    password: str = Field(min_length=4)
    profile_picture: Optional[str] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes")
        return v

class LoginRequest(CamelModel):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

class UserPublic(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    profile_picture: Optional[str] = None
    created_at: datetime
    updated_at: datetime

class RegisterResponse(CamelModel):
    message: str
    user: UserPublic

class LoginResponse(CamelModel):
    message: str
    user: UserPublic
    access_token: str
    expires_at: datetime

# --- api keys ---

class ApiKeyCreate(CamelModel):
    name: str = Field(min_length=1, max_length=50)

class ApiKeyCreatedResponse(CamelModel):
    message: str
    key: str

class ApiKeyPublic(CamelModel):
    id: uuid.UUID
    name: str
    display_key: str
    last_used_at: Optional[datetime] = None
    created_at: datetime

class ApiKeyListResponse(CamelModel):
    message: str
    api_keys: List[ApiKeyPublic]
    pagination: Pagination

class ApiKeyDeleteResponse(CamelModel):
    message: str
    data: ApiKeyPublic

# --- analytics ---

class StorageSummary(StorageMetrics):
    formatted_quota: str
    formatted_usage: str
    formatted_remaining: str

class ChartPoint(CamelModel):
    date: str
    uploads: int
    bytes: int

class AnalyticsResponse(CamelModel):
    message: str
    storage: StorageSummary
    total_files: int
    chart: List[ChartPoint]
