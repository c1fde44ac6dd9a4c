"""
Database Schemas for the Sugarcane Platform (MongoDB collections)

Each Pydantic model represents a collection in your database.
Model name is converted to lowercase for the collection name:
- User -> "user"
- Invitation -> "invitation"
- FarmerContract -> "farmercontract"
- Listing -> "listing"
- Order -> "order"
- Schedule -> "schedule"
- Application -> "application"
- Notification -> "notification"

The status literals below are the only values the API writes.
"""

from pydantic import BaseModel, Field
from typing import Optional, Literal, List
from datetime import datetime

ROLES = ["Farmer", "HHM", "Factory", "Worker"]

Role = Literal["Farmer", "HHM", "Factory", "Worker"]
InvitationType = Literal["factory-to-hhm", "hhm-to-factory"]
InvitationStatus = Literal["pending", "accepted", "declined"]
ContractStatus = Literal["farmer_pending", "hhm_accepted", "hhm_rejected", "auto_cancelled"]
ListingStatus = Literal["active", "sold", "reserved", "inactive"]
OrderStatus = Literal["pending", "accepted", "rejected"]
Urgency = Literal["normal", "medium", "high", "urgent"]
ScheduleStatus = Literal["open", "closed"]
JobType = Literal["harvesting", "maintenance"]
ApplicationStatus = Literal["pending", "approved", "rejected"]
Availability = Literal["full-time", "part-time", "flexible"]
WorkerAvailability = Literal["Available", "Unavailable"]

INVITATION_STATUSES = ["pending", "accepted", "declined"]
CONTRACT_STATUSES = ["farmer_pending", "hhm_accepted", "hhm_rejected", "auto_cancelled"]
LISTING_STATUSES = ["active", "sold", "reserved", "inactive"]
ORDER_STATUSES = ["pending", "accepted", "rejected"]
APPLICATION_STATUSES = ["pending", "approved", "rejected"]
SCHEDULE_STATUSES = ["open", "closed"]
JOB_TYPES = ["harvesting", "maintenance"]

# Role-specific profile fields a user may set on their own document
PROFILE_FIELDS = {
    "Farmer": ["farmSize", "farmingExperience", "farmingMethods", "equipment", "certifications", "cropTypes", "irrigationType"],
    "HHM": ["managementExperience", "teamSize", "managementOperations", "servicesOffered"],
    "Factory": ["factoryName", "factoryLocation", "factoryDescription", "capacity", "experience", "specialization", "contactInfo", "operatingHours"],
    "Worker": ["skills", "workPreferences", "wageRate", "availability", "workExperience"],
}
COMMON_PROFILE_FIELDS = ["name", "phone", "location"]


class User(BaseModel):
    name: str
    username: str
    email: str
    phone: str
    passwordHash: str
    role: Role
    isActive: bool = True
    location: Optional[str] = None
    associatedFactories: List[str] = []  # HHM only
    associatedHHMs: List[str] = []  # Factory only
    availability: Optional[WorkerAvailability] = None  # Worker only
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class Invitation(BaseModel):
    invitationType: InvitationType
    factoryId: str
    hhmId: str
    senderId: str
    receiverId: str
    status: InvitationStatus = "pending"
    personalMessage: Optional[str] = Field(None, max_length=500)
    responseMessage: Optional[str] = Field(None, max_length=300)
    respondedAt: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    remindersSent: int = 0
    lastReminderAt: Optional[datetime] = None
    sentAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class ContractDetails(BaseModel):
    workType: Optional[str] = None
    farmLocation: Optional[str] = None
    paymentTerms: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    requirements: Optional[str] = None


class FarmerContract(BaseModel):
    farmer_id: str
    hhm_id: str
    status: ContractStatus = "farmer_pending"
    contract_details: ContractDetails = ContractDetails()
    duration_days: int = Field(..., ge=1, le=365)
    grace_period_days: int = Field(2, ge=1, le=30)
    responseMessage: Optional[str] = None
    respondedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class Listing(BaseModel):
    farmer_id: str
    title: str
    crop_variety: str
    quantity_in_tons: float = Field(..., ge=0)
    expected_price_per_ton: float = Field(..., ge=0)
    harvest_availability_date: datetime
    location: str
    description: Optional[str] = None
    status: ListingStatus = "active"
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class BuyerDetails(BaseModel):
    name: str
    email: str
    phone: str


class OrderDetails(BaseModel):
    quantityWanted: float = Field(..., gt=0)
    proposedPrice: float = Field(..., gt=0)
    totalAmount: float = Field(..., ge=0)
    deliveryLocation: str
    message: Optional[str] = ""
    urgency: Urgency = "normal"


class Order(BaseModel):
    orderId: str
    listingId: str
    farmerId: str  # seller
    buyerId: str
    buyerDetails: BuyerDetails
    orderDetails: OrderDetails
    status: OrderStatus = "pending"
    isPartialFulfillment: bool = False
    originalQuantityRequested: Optional[float] = None
    respondedAt: Optional[datetime] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class Schedule(BaseModel):
    hhmId: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    requiredSkills: List[str]
    workerCount: int = Field(..., ge=1, le=1000)
    wageOffered: float = Field(..., ge=0)
    startDate: datetime
    endDate: Optional[datetime] = None
    jobType: JobType = "harvesting"
    status: ScheduleStatus = "open"
    applicationsCount: int = 0
    acceptedWorkersCount: int = 0


class Application(BaseModel):
    workerId: str
    scheduleId: str
    hhmId: str
    applicationMessage: Optional[str] = ""
    workerSkills: List[str]
    expectedWage: Optional[float] = None
    availability: Availability = "flexible"
    status: ApplicationStatus = "pending"
    reviewNotes: Optional[str] = None
    respondedAt: Optional[datetime] = None


class Notification(BaseModel):
    userId: str
    type: str
    title: str
    message: str
    link: Optional[str] = None
    read: bool = False
    createdAt: Optional[datetime] = None
