from typing import Literal, Optional
from pydantic import BaseModel

class ViewRequestsRequest(BaseModel):
    tab: Optional[Literal["active", "progress", "completed"]] = None
    focus: Optional[str] = None # request id to jump to

class CancelRequestRequest(BaseModel):
    source: Literal["repair", "towing"]
    request_id: str
