import logging
from fastapi import FastAPI, HTTPException, Depends
from models import TrackingView, CancellationQuote, CancelRequestResponse, ServiceRequest
from schema import ViewRequestsRequest, CancelRequestRequest
from db import get_supabase, AsyncClient, log_level
from utils import verify_customer, auth_error
from tracking import (
    RequestAggregator,
    AuthenticationError,
    RequestLoadError,
    RequestNotFound,
    CancellationError,
    build_view,
    is_cancellable,
)

logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Roadside Tracking Backend", docs_url="/api/docs", redoc_url="/api/redoc", openapi_url="/api/openapi.json")

BACK_ACTION = {"label": "Back to dashboard", "href": "/dashboard"}

async def get_aggregator(sbase: AsyncClient = Depends(get_supabase)) -> RequestAggregator:
    return RequestAggregator(sbase)

def load_error(message: str) -> HTTPException:
    return HTTPException(status_code=502, detail={"message": message, "action": BACK_ACTION})

async def find_owned_request(data: CancelRequestRequest, user_id: str, aggregator: RequestAggregator) -> ServiceRequest:
    try:
        return await aggregator.find_request(user_id, data.source, data.request_id)
    except AuthenticationError as e:
        raise auth_error(str(e))
    except RequestNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RequestLoadError as e:
        raise load_error(str(e))

# --- Tracking Functions ---

@app.post("/api/funcs/tracking.viewRequests", response_model=TrackingView)
async def view_requests(data: ViewRequestsRequest, user_id: str = Depends(verify_customer), aggregator: RequestAggregator = Depends(get_aggregator)):
    try:
        requests = await aggregator.load_requests(user_id)
    except AuthenticationError as e:
        raise auth_error(str(e))
    except RequestLoadError as e:
        raise load_error(str(e))

    return build_view(requests, tab=data.tab, focus=data.focus)

@app.post("/api/funcs/tracking.cancellationQuote", response_model=CancellationQuote)
async def cancellation_quote(data: CancelRequestRequest, user_id: str = Depends(verify_customer), aggregator: RequestAggregator = Depends(get_aggregator)):
    request = await find_owned_request(data, user_id, aggregator)
    return aggregator.cancellation_quote(request)

@app.post("/api/funcs/tracking.cancelRequest", response_model=CancelRequestResponse)
async def cancel_request(data: CancelRequestRequest, user_id: str = Depends(verify_customer), aggregator: RequestAggregator = Depends(get_aggregator)):
    # 1. Verify request exists and belongs to customer
    request = await find_owned_request(data, user_id, aggregator)

    if not is_cancellable(request):
        raise HTTPException(status_code=409, detail=f"Request is {request.status.lower()} and can no longer be cancelled")

    # 2. Write cancellation
    try:
        result = await aggregator.cancel(request)
    except CancellationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {"message": "Request cancelled successfully", "cancellation": result}

def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
