from typing import Literal, Optional
from pydantic import BaseModel, Field

Source = Literal["repair", "towing"]
TabKey = Literal["active", "progress", "completed"]

class AcceptedBid(BaseModel):
    technician_name: str
    amount: float

class BidStats(BaseModel):
    total: int = 0
    pending: int = 0
    accepted: Optional[AcceptedBid] = None

class ServiceRequest(BaseModel):
    id: str
    source: Source
    customer_id: Optional[str] = None
    service_category: str
    service_subcategory: str
    service_specification: Optional[str] = None
    vehicle_summary: str = ""
    location_city: str = "Unknown city"
    location_state: str = ""
    dropoff_city: Optional[str] = None # towing only
    dropoff_state: Optional[str] = None # towing only
    distance_miles: Optional[float] = None # towing only
    urgency_level: Optional[str] = None # towing only
    pricing_type: str
    user_budget: Optional[float] = None
    total_cost: Optional[float] = None
    status: str = "ACTIVE"
    created_at: str = ""
    problem_description: str = "No additional details provided."
    date_time_preference: str = "ASAP"
    preferred_date_time: Optional[str] = None
    photo_urls: list[str] = []
    bid_stats: BidStats = Field(default_factory=BidStats)

class CancellationQuote(BaseModel):
    request_id: str
    source: Source
    budget: float
    cancellation_fee: float
    refund_amount: float

class CancellationResult(CancellationQuote):
    status: str = "CANCELLED"
    cancelled_by: Optional[str] = None
    cancelled_at: str

# --- Read/Response Models ---

class ServiceRequestRead(ServiceRequest):
    tab: TabKey
    status_label: str
    status_icon: str
    timing_description: str
    cancellable: bool = False
    refund_preview: Optional[float] = None
    conversation_path: Optional[str] = None

class TabCounts(BaseModel):
    active: int = 0
    progress: int = 0
    completed: int = 0

class TabInfo(BaseModel):
    key: TabKey
    label: str
    description: str

class EmptyState(BaseModel):
    title: str
    description: str
    emoji: str

class TrackingView(BaseModel):
    tab: TabKey
    focus: Optional[str] = None
    counts: TabCounts
    tabs: list[TabInfo]
    requests: list[ServiceRequestRead] = []
    empty_state: Optional[EmptyState] = None

class CancelRequestResponse(BaseModel):
    message: str
    cancellation: CancellationResult
