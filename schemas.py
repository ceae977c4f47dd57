"""
Database Schemas for CivicAlert

Each Pydantic model represents a MongoDB collection or an embedded document.
Collection names: Issue -> "issues", User -> "users", Payment -> "payments".
Request bodies live at the bottom of the file.
"""

from datetime import datetime, timezone
from typing import Optional, Literal, List

from pydantic import BaseModel, ConfigDict, Field, EmailStr

IssueStatus = Literal['Pending', 'In Progress', 'Resolved', 'Rejected', 'Closed']
Priority = Literal['Normal', 'High']
PaymentStatus = Literal['Pending', 'Paid']
Role = Literal['citizen', 'staff', 'admin']
PaymentType = Literal['subscription', 'issue_promotion']

ISSUE_STATUSES = ('Pending', 'In Progress', 'Resolved', 'Rejected', 'Closed')
PRIORITY_RANK = {'High': 0, 'Normal': 1}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimelineEntry(BaseModel):
    """One immutable event in an issue's audit log."""
    model_config = ConfigDict(frozen=True)

    status: IssueStatus
    message: str = Field('', description="Human readable description of the event")
    actor: str = Field(..., description="Email of whoever caused the event")
    timestamp: datetime = Field(default_factory=utcnow)


class AssignedStaff(BaseModel):
    id: str = Field(..., description="Staff user id as string")
    name: str
    email: EmailStr


class Issue(BaseModel):
    title: str = Field(..., description="Short title")
    description: str = Field(..., description="Issue description")
    category: str = Field(..., description="Issue category")
    location: str = Field(..., description="Free-form location")
    image: str = Field('', description="Image URL if any")
    priority: Priority = Field('Normal')
    status: IssueStatus = Field('Pending')
    paymentStatus: Optional[PaymentStatus] = Field(None, description="Only set for boosted issues")
    upvotes: int = Field(0, ge=0)
    upvotedBy: List[str] = Field(default_factory=list)
    assignedStaff: Optional[AssignedStaff] = None
    timeline: List[TimelineEntry] = Field(default_factory=list)
    createdBy: str = Field(..., description="Reporter email")
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    photo: str = Field('', description="Avatar URL")
    phone: str = Field('')
    role: Role = Field('citizen', description="Role of the account")
    isPremium: bool = Field(False)
    isBlocked: bool = Field(False)
    uid: Optional[str] = Field(None, description="Identity provider account id (staff)")
    createdAt: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    transactionId: str = Field(..., description="Provider payment id, unique")
    email: str
    name: str = ''
    amount: float
    date: datetime = Field(default_factory=utcnow)
    type: PaymentType
    status: str = 'paid'
    issueId: Optional[str] = None


# ---------- Request bodies ----------

class IssueCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    priority: Priority = 'Normal'
    image: Optional[str] = ''
    createdBy: Optional[EmailStr] = None


class IssueUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    image: Optional[str] = None


class UpvoteRequest(BaseModel):
    email: Optional[EmailStr] = None


class AssignRequest(BaseModel):
    staffId: str
    staffName: str
    staffEmail: EmailStr


class StatusUpdateRequest(BaseModel):
    status: IssueStatus
    message: Optional[str] = None


class UserCreateRequest(BaseModel):
    name: str
    email: EmailStr
    photo: Optional[str] = ''


class StaffCreateRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = ''
    photo: Optional[str] = ''


class StaffUpdateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    photo: Optional[str] = None


class BlockRequest(BaseModel):
    isBlocked: bool


class CheckoutRequest(BaseModel):
    paymentType: PaymentType
    customerEmail: Optional[EmailStr] = None
    customerName: Optional[str] = ''
    amount: Optional[float] = Field(None, gt=0)
    price: Optional[float] = Field(None, gt=0)
    issueId: Optional[str] = None
    issueData: Optional[IssueCreateRequest] = None


class PaymentSuccessRequest(BaseModel):
    sessionId: str


class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
