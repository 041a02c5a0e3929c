import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from supabase import AsyncClient

from models import (
    AcceptedBid,
    BidStats,
    CancellationQuote,
    CancellationResult,
    EmptyState,
    ServiceRequest,
    ServiceRequestRead,
    TabCounts,
    TabInfo,
    TrackingView,
)

logger = logging.getLogger(__name__)

CANCELLATION_FEE = 5.00

SOURCE_TABLES = {"repair": "repair_board_posts", "towing": "towing_board_posts"}
BID_TABLES = {"repair": "technician_bids", "towing": "towing_bids"}

REPAIR_COLUMNS = (
    "id, user_id, service_category, service_subcategory, service_specification, "
    "vehicle_year, vehicle_make, vehicle_model, location_city, location_state, "
    "pricing_type, user_budget, total_cost, status, created_at, problem_description, "
    "date_time_preference, preferred_date_time, photo_urls"
)
TOWING_COLUMNS = (
    "id, user_id, towing_service_type, vehicle_year, vehicle_make, vehicle_model, "
    "pickup_city, pickup_state, dropoff_city, dropoff_state, pricing_type, maximum_bid, "
    "total_cost, status, created_at, problem_description, date_time_preference, "
    "preferred_date_time, urgency_level, distance, photo_urls"
)
BID_COLUMNS = "id, post_id, technician_name, bid_amount, status"

ACTIVE_STATUSES = {"ACTIVE", "OPEN", "REQUESTED"}
PROGRESS_STATUSES = {
    "IN_PROGRESS",
    "ASSIGNED",
    "ACCEPTED",
    "CONFIRMED",
    "EN_ROUTE",
    "ARRIVED",
    "SCHEDULED",
    "REVIEW_PENDING",
}
COMPLETED_STATUSES = {"COMPLETED", "CANCELLED", "FULFILLED", "CLOSED"}

# status -> (icon, label)
STATUS_META = {
    "ACTIVE": ("📋", "Active"),
    "OPEN": ("📋", "Active"),
    "REQUESTED": ("📋", "Active"),
    "IN_PROGRESS": ("🔧", "In progress"),
    "ASSIGNED": ("🤝", "Technician assigned"),
    "ACCEPTED": ("🤝", "Bid accepted"),
    "CONFIRMED": ("✅", "Confirmed"),
    "EN_ROUTE": ("🚗", "Technician en route"),
    "ARRIVED": ("📍", "Technician arrived"),
    "SCHEDULED": ("🗓️", "Scheduled"),
    "REVIEW_PENDING": ("⭐", "Awaiting review"),
    "COMPLETED": ("✔️", "Completed"),
    "FULFILLED": ("✔️", "Completed"),
    "CLOSED": ("✔️", "Closed"),
    "CANCELLED": ("❌", "Cancelled"),
}

TABS = [
    TabInfo(key="active", label="Active", description="Requests awaiting bids"),
    TabInfo(key="progress", label="In Progress", description="Accepted bids & scheduled work"),
    TabInfo(key="completed", label="Completed", description="Finished or cancelled jobs"),
]

EMPTY_STATES = {
    "active": EmptyState(
        title="No active requests",
        description="Post a new service request to start receiving bids from technicians.",
        emoji="📋",
    ),
    "progress": EmptyState(
        title="No jobs in progress",
        description="Once you accept a bid, the job will appear here for easy tracking.",
        emoji="🔧",
    ),
    "completed": EmptyState(
        title="No completed jobs yet",
        description="Finished jobs, along with receipts and reviews, will appear here.",
        emoji="✅",
    ),
}

LOAD_ERROR_MESSAGE = "Unable to load your requests right now."
CANCEL_ERROR_MESSAGE = "Unable to cancel this request right now."

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class AuthenticationError(Exception):
    pass

class RequestLoadError(Exception):
    pass

class RequestNotFound(Exception):
    pass

class CancellationError(Exception):
    pass


# --- Row normalization ---

def _get(row: dict, key: str, default: Any = None) -> Any:
    value = row.get(key)
    return default if value is None else value

def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)

def _vehicle_summary(row: dict) -> str:
    parts = (_get(row, "vehicle_year", ""), _get(row, "vehicle_make", ""), _get(row, "vehicle_model", ""))
    return " ".join(str(p) for p in parts).strip()

def _photo_urls(row: dict) -> list[str]:
    urls = row.get("photo_urls")
    return [str(u) for u in urls] if isinstance(urls, list) else []

def _id(value: Any) -> str:
    return "" if value is None else str(value)

def _common_fields(row: dict) -> dict:
    return {
        "id": _id(row.get("id")),
        "customer_id": _id(row.get("user_id")) or None,
        "vehicle_summary": _vehicle_summary(row),
        "total_cost": _number(row.get("total_cost")),
        "status": _get(row, "status", "ACTIVE"),
        "created_at": _get(row, "created_at", ""),
        "problem_description": _get(row, "problem_description", "No additional details provided."),
        "date_time_preference": _get(row, "date_time_preference", "ASAP"),
        "preferred_date_time": row.get("preferred_date_time"),
        "photo_urls": _photo_urls(row),
    }

def normalize_repair(row: dict) -> ServiceRequest:
    return ServiceRequest(
        source="repair",
        service_category=_get(row, "service_category", "General Repair"),
        service_subcategory=_get(row, "service_subcategory", "Service Request"),
        service_specification=row.get("service_specification"),
        location_city=_get(row, "location_city", "Unknown city"),
        location_state=_get(row, "location_state", ""),
        pricing_type=_get(row, "pricing_type", "Fixed"),
        user_budget=_number(row.get("user_budget")),
        **_common_fields(row),
    )

def normalize_towing(row: dict) -> ServiceRequest:
    pickup_city = row.get("pickup_city")
    dropoff_city = row.get("dropoff_city")
    specification = None
    if pickup_city and dropoff_city:
        specification = (
            f"Pickup: {pickup_city}, {_get(row, 'pickup_state', '')} → "
            f"Dropoff: {dropoff_city}, {_get(row, 'dropoff_state', '')}"
        )

    budget = _number(row.get("maximum_bid"))
    if budget is None:
        budget = _number(row.get("total_cost"))

    return ServiceRequest(
        source="towing",
        service_category="Towing",
        service_subcategory=_get(row, "towing_service_type", "Tow Service"),
        service_specification=specification,
        location_city=_get(row, "pickup_city", "Unknown city"),
        location_state=_get(row, "pickup_state", ""),
        dropoff_city=dropoff_city,
        dropoff_state=row.get("dropoff_state"),
        distance_miles=_number(row.get("distance")),
        urgency_level=row.get("urgency_level"),
        pricing_type=_get(row, "pricing_type", "Quote"),
        user_budget=budget,
        **_common_fields(row),
    )

NORMALIZERS = {"repair": normalize_repair, "towing": normalize_towing}


# --- Bid aggregation ---

def fold_bids(bids: list[dict]) -> dict[str, BidStats]:
    # Missing status counts as PENDING; with several ACCEPTED bids the last one wins
    stats: dict[str, BidStats] = {}
    for bid in bids:
        post_id = bid.get("post_id")
        if not post_id:
            continue
        entry = stats.setdefault(str(post_id), BidStats())
        entry.total += 1

        status = str(bid.get("status") or "PENDING").upper()
        if status == "PENDING":
            entry.pending += 1
        elif status == "ACCEPTED":
            if entry.accepted is not None:
                logger.warning("Post %s has more than one accepted bid; keeping the latest", post_id)
            entry.accepted = AcceptedBid(
                technician_name=_get(bid, "technician_name", "Technician"),
                amount=_number(bid.get("bid_amount")) or 0.0,
            )
    return stats


# --- Classification & display ---

def classify(request: Union[ServiceRequest, str, None]) -> str:
    status = request.status if isinstance(request, ServiceRequest) else request
    key = status.upper() if status else "ACTIVE"
    if key in COMPLETED_STATUSES:
        return "completed"
    if key in PROGRESS_STATUSES:
        return "progress"
    return "active"

def status_meta(status: Optional[str]) -> tuple[str, str]:
    key = status.upper() if status else "ACTIVE"
    return STATUS_META.get(key, STATUS_META["ACTIVE"])

def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def format_datetime(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    parsed = _parse_ts(value)
    if parsed is None:
        return value
    hour = parsed.hour % 12 or 12
    return f"{parsed:%B} {parsed.day}, {parsed.year}, {hour}:{parsed:%M %p}"

def format_time_preference(preference: Optional[str], specific: Optional[str] = None) -> str:
    if not preference:
        return "Not specified"
    normalized = preference.upper()

    if normalized == "ASAP":
        return "As soon as possible"
    if normalized == "FLEXIBLE":
        return "Flexible scheduling"
    if "SPECIFIC" in normalized or normalized == "SCHEDULED":
        return format_datetime(specific) or "Specific time requested"

    return preference

def is_cancellable(request: ServiceRequest) -> bool:
    # Only untouched postings can be cancelled by the customer
    return request.status == "ACTIVE"

def request_budget(request: ServiceRequest) -> float:
    if request.user_budget is not None:
        return request.user_budget
    if request.total_cost is not None:
        return request.total_cost
    return 0.0

def refund_amount(budget: float, fee: float = CANCELLATION_FEE) -> float:
    return round(max(0.0, budget - fee), 2)

def cancellation_quote(request: ServiceRequest) -> CancellationQuote:
    budget = request_budget(request)
    return CancellationQuote(
        request_id=request.id,
        source=request.source,
        budget=budget,
        cancellation_fee=CANCELLATION_FEE,
        refund_amount=refund_amount(budget),
    )

def to_read(request: ServiceRequest) -> ServiceRequestRead:
    icon, label = status_meta(request.status)
    cancellable = is_cancellable(request)
    return ServiceRequestRead(
        **request.model_dump(),
        tab=classify(request),
        status_label=label,
        status_icon=icon,
        timing_description=format_time_preference(request.date_time_preference, request.preferred_date_time),
        cancellable=cancellable,
        refund_preview=refund_amount(request_budget(request)) if cancellable else None,
        conversation_path=f"/messages?type={request.source}&postId={request.id}" if cancellable else None,
    )

def count_tabs(requests: list[ServiceRequest]) -> TabCounts:
    counts = TabCounts()
    for request in requests:
        tab = classify(request)
        setattr(counts, tab, getattr(counts, tab) + 1)
    return counts

def build_view(requests: list[ServiceRequest], tab: Optional[str] = None, focus: Optional[str] = None) -> TrackingView:
    selected = tab or "active"
    # A focused request id overrides `tab`
    if focus:
        match = next((r for r in requests if r.id == focus), None)
        if match is not None:
            selected = classify(match)

    visible = [to_read(r) for r in requests if classify(r) == selected]
    return TrackingView(
        tab=selected,
        focus=focus,
        counts=count_tabs(requests),
        tabs=TABS,
        requests=visible,
        empty_state=None if visible else EMPTY_STATES[selected],
    )

def sort_newest_first(requests: list[ServiceRequest]) -> list[ServiceRequest]:
    return sorted(requests, key=lambda r: _parse_ts(r.created_at) or _OLDEST, reverse=True)


# --- Aggregator ---

class RequestAggregator:
    """Reads and cancels a customer's service requests through a Supabase client."""

    def __init__(self, sbase: AsyncClient, clock: Optional[Callable[[], datetime]] = None):
        self.sbase = sbase
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _fetch_posts(self, source: str, customer_id: str) -> list[dict]:
        columns = REPAIR_COLUMNS if source == "repair" else TOWING_COLUMNS
        response = await (
            self.sbase.table(SOURCE_TABLES[source])
            .select(columns)
            .eq("user_id", customer_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def _fetch_bids(self, source: str, post_ids: list) -> list[dict]:
        if not post_ids:
            return []
        try:
            response = await self.sbase.table(BID_TABLES[source]).select(BID_COLUMNS).in_("post_id", post_ids).execute()
        except Exception as e:
            logger.warning("Failed to load %s bids: %s", source, e)
            return []
        return response.data or []

    async def load_requests(self, customer_id: Optional[str]) -> list[ServiceRequest]:
        """
        Returns the customer's repair and towing requests, newest first, with bid stats.
        Only a failed repair read is fatal.
        """
        if not customer_id:
            raise AuthenticationError("Sign in to view your requests.")

        repair_rows, towing_rows = await asyncio.gather(
            self._fetch_posts("repair", customer_id),
            self._fetch_posts("towing", customer_id),
            return_exceptions=True,
        )
        for result in (repair_rows, towing_rows):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        if isinstance(repair_rows, Exception):
            logger.error("Failed to load repair requests for %s", customer_id, exc_info=repair_rows)
            raise RequestLoadError(LOAD_ERROR_MESSAGE) from repair_rows
        if isinstance(towing_rows, Exception):
            logger.warning("Failed to load towing requests for %s: %s", customer_id, towing_rows)
            towing_rows = []

        rows = {"repair": repair_rows, "towing": towing_rows}
        repair_bids, towing_bids = await asyncio.gather(
            self._fetch_bids("repair", [row["id"] for row in repair_rows if row.get("id")]),
            self._fetch_bids("towing", [row["id"] for row in towing_rows if row.get("id")]),
        )
        stats = {"repair": fold_bids(repair_bids), "towing": fold_bids(towing_bids)}

        requests = []
        for source in ("repair", "towing"):
            for row in rows[source]:
                request = NORMALIZERS[source](row)
                request.bid_stats = stats[source].get(request.id, BidStats())
                requests.append(request)

        return sort_newest_first(requests)

    async def find_request(self, customer_id: Optional[str], source: str, request_id: str) -> ServiceRequest:
        if not customer_id:
            raise AuthenticationError("Sign in to manage your requests.")

        columns = REPAIR_COLUMNS if source == "repair" else TOWING_COLUMNS
        try:
            response = await (
                self.sbase.table(SOURCE_TABLES[source])
                .select(columns)
                .eq("id", request_id)
                .eq("user_id", customer_id)
                .execute()
            )
        except Exception as e:
            logger.exception("Failed to load %s request %s", source, request_id)
            raise RequestLoadError(LOAD_ERROR_MESSAGE) from e

        if not response.data:
            raise RequestNotFound("Service request not found or does not belong to you")
        return NORMALIZERS[source](response.data[0])

    def cancellation_quote(self, request: ServiceRequest) -> CancellationQuote:
        return cancellation_quote(request)

    async def cancel(self, request: ServiceRequest) -> CancellationResult:
        # Status is not re-checked here; callers gate on is_cancellable()
        quote = cancellation_quote(request)
        now = self.clock().isoformat()
        updates = {
            "status": "CANCELLED",
            "cancellation_fee": quote.cancellation_fee,
            "cancelled_by": request.customer_id,
            "cancelled_at": now,
            "refund_amount": quote.refund_amount,
            "updated_at": now,
        }

        try:
            response = await self.sbase.table(SOURCE_TABLES[request.source]).update(updates).eq("id", request.id).execute()
        except Exception as e:
            logger.warning("Failed to cancel %s request %s: %s", request.source, request.id, e)
            raise CancellationError(getattr(e, "message", None) or str(e) or CANCEL_ERROR_MESSAGE) from e

        if not response.data:
            # Row-level security filters the update instead of erroring
            logger.warning("Cancel of %s request %s updated no rows", request.source, request.id)
            raise CancellationError(CANCEL_ERROR_MESSAGE)

        logger.info("Cancelled %s request %s (refund %.2f)", request.source, request.id, quote.refund_amount)
        return CancellationResult(
            **quote.model_dump(),
            cancelled_by=request.customer_id,
            cancelled_at=now,
        )
