from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from .models import RegistrationStatus, UserRole


WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
TimeOfDay = Literal["morning", "afternoon", "evening", "night"]


def _validate_password_strength(v: str) -> str:
    if len(v) < 8:
        raise ValueError("Password must be at least 8 characters")
    if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
        raise ValueError("Password must include letters and numbers")
    return v


class TimePreferences(BaseModel):
    preferred_days: List[str] = Field(default_factory=list)
    preferred_time_of_day: List[TimeOfDay] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("preferred_days")
    @classmethod
    def validate_days(cls, value: List[str]) -> List[str]:
        normalized = []
        for day in value:
            name = day.strip().capitalize()
            if name not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day}")
            normalized.append(name)
        return normalized


class NotificationPreferences(BaseModel):
    email_notifications: bool = True
    event_reminders: bool = True
    weekly_newsletter: bool = False

    model_config = ConfigDict(extra="forbid")


class UserPreferences(BaseModel):
    """Typed form of the `users.preferences` JSON column.

    Unknown keys are rejected so a misspelled field fails loudly instead of
    silently falling back to defaults.
    """

    categories: List[str] = Field(default_factory=list)
    max_distance_km: Optional[float] = Field(default=None, gt=0)
    preferred_locations: List[str] = Field(default_factory=list)
    time_preferences: TimePreferences = Field(default_factory=TimePreferences)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)

    model_config = ConfigDict(extra="forbid")

    @field_validator("categories", "preferred_locations")
    @classmethod
    def strip_blank(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(item.strip() for item in value if item and item.strip()))


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=1, max_length=255)
    location: Optional[str] = Field(default=None, max_length=255)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _validate_password_strength(v)


class UserRegister(UserCreate):
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        password = info.data.get("password") if hasattr(info, "data") else None
        if password and v != password:
            raise ValueError("Passwords do not match")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    name: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str
    role: UserRole
    user_id: int


class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[UserRole] = None
    user_id: Optional[int] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileResponse(BaseModel):
    id: int
    email: EmailStr
    name: Optional[str] = None
    location: Optional[str] = None
    role: UserRole
    created_at: datetime
    preferences: UserPreferences


class ProfileUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    location: Optional[str] = Field(default=None, max_length=255)
    preferences: Optional[UserPreferences] = None


class PasswordUpdate(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _validate_password_strength(v)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        pwd = info.data.get("new_password") if hasattr(info, "data") else None
        if pwd and v != pwd:
            raise ValueError("New passwords do not match")
        return v


class EventBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    date: datetime
    time: str = Field(..., min_length=1, max_length=50)
    location: str = Field(..., min_length=1, max_length=255)
    image_url: Optional[str] = Field(default=None, max_length=500)
    capacity: int = Field(..., ge=1)

    @field_validator("title", "description", "category", "time", "location")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Field is required")
        return value


class EventCreate(EventBase):
    pass


class EventUpdate(EventBase):
    pass


class EventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    category: str
    date: datetime
    time: Optional[str]
    location: Optional[str]
    image_url: Optional[str]
    capacity: int
    created_by: int
    creator_name: Optional[str] = None
    attendees: int = 0
    created_at: Optional[datetime] = None


class EventDetailResponse(EventResponse):
    is_registered: bool = False
    registration_status: Optional[RegistrationStatus] = None
    available_seats: int = 0


class PaginatedEvents(BaseModel):
    items: List[EventResponse]
    total: int
    page: int
    page_size: int
    pages: int


class CategoryListResponse(BaseModel):
    items: List[str]


class RecommendationsResponse(BaseModel):
    events: List[EventResponse]


class EventSummary(BaseModel):
    id: int
    title: str
    category: str
    date: datetime
    time: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    name: Optional[str] = None
    email: EmailStr

    model_config = ConfigDict(from_attributes=True)


class RegistrationResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    status: RegistrationStatus
    qr_code_data: Optional[str] = None
    created_at: datetime
    event: Optional[EventSummary] = None
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)


class RegistrationActionResponse(BaseModel):
    message: str
    registration: RegistrationResponse


class RegistrationStatusResponse(BaseModel):
    id: int
    is_registered: bool
    status: RegistrationStatus


class PaginatedRegistrations(BaseModel):
    items: List[RegistrationResponse]
    total: int
    page: int
    page_size: int
    pages: int


class CategoryStat(BaseModel):
    category: str
    count: int


class RegistrationDayStat(BaseModel):
    date: str
    registrations: int


class AdminStatsResponse(BaseModel):
    total_events: int
    upcoming_events: int
    total_users: int
    total_registrations: int
    category_stats: List[CategoryStat]
    registration_trend: List[RegistrationDayStat]


class AdminEventSummary(BaseModel):
    id: int
    title: str
    category: str
    date: datetime
    time: Optional[str] = None
    location: Optional[str] = None
    attendees: int = 0
    created_at: Optional[datetime] = None


class AdminEventListResponse(BaseModel):
    items: List[AdminEventSummary]


class NextEventResponse(BaseModel):
    date: Optional[datetime] = None


class AdminUserResponse(BaseModel):
    id: int
    email: EmailStr
    name: Optional[str] = None
    role: UserRole
    location: Optional[str] = None
    created_at: datetime
    registrations_count: int = 0


class PaginatedAdminUsers(BaseModel):
    items: List[AdminUserResponse]
    total: int
    page: int
    page_size: int
    pages: int


class RoleUpdate(BaseModel):
    role: UserRole

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class ActivityCreate(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    target_type: str = Field(..., min_length=1, max_length=50)
    target_id: Optional[str] = Field(default=None, max_length=100)
    target_name: str = Field(..., min_length=1, max_length=255)
    link: Optional[str] = Field(default=None, max_length=500)


class ActivityCreatedResponse(BaseModel):
    id: int


class RecentActivityResponse(BaseModel):
    id: int
    action: str
    target: str
    time: str
    link: str


class ActivityResponse(BaseModel):
    id: int
    action: str
    target: str
    target_type: str
    date: datetime
    link: str


class PaginatedActivities(BaseModel):
    items: List[ActivityResponse]
    total: int
    page: int
    page_size: int
    pages: int


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(..., min_length=1, max_length=50)


class ChatResponse(BaseModel):
    reply: str
