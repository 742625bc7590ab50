"""Data models for the contact import pipeline."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ImportStatus(str, Enum):
    """Lifecycle of a persisted import job."""
    pending = "pending"
    processing = "processing"
    completed = "completed"
    aborted = "aborted"


class PhoneType(str, Enum):
    """Role of an entry in a contact's phones list."""
    primary = "primary"
    lid = "lid"


class PhoneEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    phone: str
    type: str = PhoneType.primary.value


class EmailEntry(BaseModel):
    email: str
    type: str = "primary"


# --- Raw input ---

class RawContactRecord(BaseModel):
    """Loosely typed contact payload as supplied by the caller.

    Unknown columns are kept (``extra="allow"``) so that nothing mapped by
    the client is lost, but only the fields below are read downstream.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    temp_id: Optional[str] = Field(default=None, alias="_tempId")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    document_number: Optional[str] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    responsible_name: Optional[str] = None
    company_name: Optional[str] = None
    position: Optional[str] = None
    custom_position: Optional[str] = None
    status: Optional[str] = None
    source: Optional[str] = None
    notes: Any = None
    value: Union[float, str, None] = None
    tags: Union[str, list, None] = None

    @field_validator(
        "temp_id",
        "first_name",
        "last_name",
        "email",
        "phone",
        "document_number",
        "gender",
        "birth_date",
        "responsible_name",
        "company_name",
        "position",
        "custom_position",
        "status",
        "source",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value):
        # Spreadsheet exports hand us ints/floats for phones and documents.
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value


class IndividualAssignment(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    tags: list[Any] = Field(default_factory=list)


class ImportRequest(BaseModel):
    """Request body of a bulk import."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    contacts_data: list[RawContactRecord] = Field(alias="contactsData")
    import_name: str = Field(default="Manual import", alias="importName")
    global_tags: list[Any] = Field(default_factory=list, alias="globalTags")
    individual_assignments: dict[str, IndividualAssignment] = Field(
        default_factory=dict, alias="individualAssignments"
    )
    import_id: Optional[str] = Field(default=None, alias="importId")


# --- Prepared / persisted records ---

class PreparedContact(BaseModel):
    """Normalized contact built once from a RawContactRecord.

    Mutated in place by validation and enrichment, then either inserted
    as a new contact or merged into an existing one.
    """
    model_config = ConfigDict(populate_by_name=True)

    temp_id: str
    company_id: str
    first_name: str
    last_name: str = ""
    document_number: str = ""
    document_type: Optional[str] = None
    gender: str = "not_informed"
    birth_date: Optional[str] = None
    responsible_name: str = ""
    company_name: str = ""
    position: str = ""
    custom_position: Optional[str] = None
    status: str = "lead"
    source: str = "import"
    notes: list = Field(default_factory=list)
    value: Optional[float] = None
    import_name: str = ""
    import_type: str = "manual"
    email: Optional[str] = None
    emails: list[EmailEntry] = Field(default_factory=list)
    phone: Optional[str] = None
    phones: list[PhoneEntry] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    tags_system: list[str] = Field(default_factory=list)
    checked: bool = False
    number_exists: Optional[bool] = Field(default=None, alias="numberExists")
    avatar_url: Optional[str] = None
    nickname: Optional[str] = None

    def has_phone_type(self, phone_type: str) -> bool:
        return any(p.type == phone_type for p in self.phones)

    def to_record(self) -> dict:
        """Serialize for the contact store (store field names)."""
        record = self.model_dump(mode="json", by_alias=True, exclude={"temp_id"})
        for key in ("email", "phone", "avatar_url", "nickname"):
            if record.get(key) is None:
                record.pop(key, None)
        return record


class Tag(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    company_id: str
    name: str
    type: str = "manual"
    is_smart: bool = False


class ExistingContact(BaseModel):
    """A persisted contact; the target of dedup classification."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    company_id: Optional[str] = None
    first_name: Optional[str] = None
    phone: Optional[str] = None
    phones: list[PhoneEntry] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    deleted: Optional[bool] = None

    @field_validator("phones", mode="before")
    @classmethod
    def _usable_phones(cls, value):
        # Entries without a number (bare LID stubs, nulls) cannot be matched.
        entries = []
        for entry in value or []:
            if isinstance(entry, PhoneEntry):
                entries.append(entry)
            elif isinstance(entry, dict) and entry.get("phone"):
                entries.append(entry)
        return entries

    @field_validator("tags", mode="before")
    @classmethod
    def _tag_ids(cls, value):
        return [tag for tag in value or [] if tag is not None]

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)


class ValidationSession(BaseModel):
    """A messaging channel able to reach the directory for a tenant."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    company_id: Optional[str] = None
    session_name: str
    status: str = "WORKING"
    is_default: bool = False


class ImportJob(BaseModel):
    """Durable progress record, polled by clients as the source of truth."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    company_id: Optional[str] = None
    name: str = ""
    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    status: ImportStatus = ImportStatus.pending
    completed_date: Optional[datetime] = None


# --- Directory / enrichment results ---

class DirectoryCheck(BaseModel):
    """Outcome of one directory existence check (or a resolved search)."""
    verified: bool = False
    exists: Optional[bool] = None
    directory_id: Optional[str] = None
    phone_checked: Optional[str] = None
    reason: str = ""

    @property
    def canonical_phone(self) -> Optional[str]:
        if not self.directory_id:
            return None
        return self.directory_id.split("@", 1)[0]


class EnrichedContact(BaseModel):
    phone: Optional[str] = None
    lid: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None


class EnrichmentResponse(BaseModel):
    success: bool = False
    contact: Optional[EnrichedContact] = None
    error: Optional[str] = None


# --- Progress / summary ---

class ProgressSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    import_id: Optional[str] = None
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: int = 0
    updated: int = 0
    no_directory_presence: int = Field(default=0, alias="noWhatsApp")
    status: ImportStatus = ImportStatus.processing

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ImportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    successful_records: int = 0
    updated_records: int = 0
    failed_records: int = 0
    duplicates: int = 0
    no_directory_presence: int = Field(default=0, alias="noWhatsApp")
    total_records: int = 0
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
    import_id: Optional[str] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message(self) -> str:
        return (
            f"Import completed: {self.successful_records} new, "
            f"{self.updated_records} updated, "
            f"{self.no_directory_presence} without WhatsApp."
        )

    def to_response(self) -> dict:
        """Response body returned by the import endpoint."""
        data = self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"import_id", "finished_at"},
        )
        return {"success": True, "message": self.message, "data": data}
