from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


# Persisted enum values; stored documents depend on these exact strings.

class Role(str, Enum):
    CLIENT = "CLIENT"
    FREELANCER = "FREELANCER"
    ADMIN = "ADMIN"

class ProjectStatus(str, Enum):
    ADMIN_VERIFICATION = "ADMIN_VERIFICATION"
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    PENDING_COMPLETION = "PENDING_COMPLETION"
    COMPLETED = "COMPLETED"
    REJECTED_COMPLETION = "REJECTED_COMPLETION"
    CANCELLED = "CANCELLED"

class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class MeetingRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

class MeetingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    RESCHEDULED = "RESCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

class RequesterType(str, Enum):
    CLIENT = "CLIENT"
    FREELANCER = "FREELANCER"

class RatingType(str, Enum):
    CLIENT_TO_FREELANCER = "CLIENT_TO_FREELANCER"
    FREELANCER_TO_CLIENT = "FREELANCER_TO_CLIENT"


ASSIGNED_STATUSES = frozenset(s.value for s in (
    ProjectStatus.ASSIGNED,
    ProjectStatus.PENDING_COMPLETION,
    ProjectStatus.COMPLETED,
    ProjectStatus.REJECTED_COMPLETION,
))

TERMINAL_PROJECT_STATUSES = frozenset(s.value for s in (
    ProjectStatus.COMPLETED,
    ProjectStatus.CANCELLED,
    ProjectStatus.REJECTED_COMPLETION,
))


class Document(BaseModel):
    """
    Base for everything persisted through the Storage layer.
    Enum fields are kept as their plain string values so documents
    round-trip through Firestore unchanged.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str = Field(default_factory=new_id)

    def to_document(self) -> dict:
        return self.model_dump()


class Actor(BaseModel):
    """Verified caller identity supplied by the auth layer."""
    user_id: str
    role: Role


class User(Document):
    role: Role
    name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

class Freelancer(Document):
    user_id: str
    skills: List[str] = []
    experience: Optional[str] = None
    hourly_rate: Optional[float] = None
    availability: bool = True
    ratings: float = 0.0
    projects_completed: int = 0
    is_verified: bool = False

class Client(Document):
    user_id: str
    company_name: Optional[str] = None
    industry: Optional[str] = None
    projects_posted: int = 0
    ratings: float = 0.0
    is_verified: bool = False

class ProjectBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    skills_required: List[str] = []
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    duration: Optional[str] = None

class ProjectCreate(ProjectBase):
    pass

class Project(Document, ProjectBase):
    client_id: str
    status: ProjectStatus = ProjectStatus.ADMIN_VERIFICATION
    assigned_to: Optional[str] = None # Freelancer id
    admin_note: Optional[str] = None
    completion_note: Optional[str] = None
    completion_rejection_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

class ProjectTransition(Document):
    project_id: str
    from_status: Optional[ProjectStatus] = None
    to_status: ProjectStatus
    actor_id: str
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

class ApplicationCreate(BaseModel):
    proposal: str = Field(min_length=1)
    cover_letter: Optional[str] = None

class Application(Document):
    project_id: str
    freelancer_id: str
    proposal: str
    cover_letter: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class MeetingRequestCreate(BaseModel):
    application_id: str
    requester_type: RequesterType
    reason: str = Field(min_length=1)
    suggested_dates: List[str] = []

class MeetingRequest(Document):
    project_id: str
    application_id: str
    requester_id: str # User id
    requester_type: RequesterType
    reason: str
    suggested_dates: List[str] = []
    status: MeetingRequestStatus = MeetingRequestStatus.PENDING
    response_note: Optional[str] = None
    created_meeting_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    responded_at: Optional[datetime] = None

class MeetingApproval(BaseModel):
    scheduled_date: str # e.g. "2024-05-01"
    scheduled_time: str # e.g. "14:30"
    google_meet_link: Optional[str] = None
    duration_minutes: int = Field(default=30, gt=0)
    agenda: Optional[str] = None

class MeetingResponse(BaseModel):
    response_note: Optional[str] = None

class Meeting(Document):
    project_id: str
    application_id: str
    meeting_request_id: str
    client_id: str
    freelancer_id: str
    scheduled_date: str
    scheduled_time: str
    duration_minutes: int = 30
    google_meet_link: Optional[str] = None
    agenda: Optional[str] = None
    status: MeetingStatus = MeetingStatus.SCHEDULED
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class MeetingUpdate(BaseModel):
    status: MeetingStatus
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None

class RatingCreate(BaseModel):
    rated_id: str # User id of the counterpart
    rating: int
    review: Optional[str] = None

class RatingUpdate(BaseModel):
    rating: int
    review: Optional[str] = None

class Rating(Document):
    project_id: str
    rater_id: str
    rated_id: str
    rating: int
    review: Optional[str] = None
    rating_type: RatingType
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class NoteIn(BaseModel):
    # Shared body for transitions that only carry an optional note or reason
    note: Optional[str] = None

class AvailabilityUpdate(BaseModel):
    availability: bool
