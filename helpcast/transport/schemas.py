# helpcast/transport/schemas.py
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpcast.core.broadcast.domain import BroadcastInput


def _as_text(value: Any) -> Any:
    # Mobile clients send numeric floors, flat numbers and error codes
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class BroadcastRequestIn(BaseModel):
    """
    Inbound broadcast creation payload (camelCase on the wire).

    Every field is optional and may be null: a missing category falls
    back to "other", null lists are empty, and missing coordinates simply
    mean no helper can be matched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    category_id: str | None = Field(default=None, alias="categoryId")
    category_name: str | None = Field(default=None, alias="categoryName")
    description: str | None = None
    address: str | None = None
    flat_number: str | None = Field(default=None, alias="flatNumber")
    floor: str | None = None
    landmark: str | None = None
    location_lat: float | None = Field(default=None, alias="locationLat")
    location_lng: float | None = Field(default=None, alias="locationLng")
    images: list[str] | None = None
    videos: list[Any] | None = None
    ai_analysis: dict[str, Any] | None = Field(default=None, alias="aiAnalysis")
    selected_tier: str | None = Field(default=None, alias="selectedTier")
    estimated_price: float | None = Field(default=None, alias="estimatedPrice")
    estimated_duration: Any = Field(default=None, alias="estimatedDuration")
    confidence: float | None = None
    urgency: str | None = None
    problem_duration: str | None = Field(default=None, alias="problemDuration")
    error_code: str | None = Field(default=None, alias="errorCode")
    preferred_time: str | None = Field(default=None, alias="preferredTime")
    payment_method: str | None = Field(default="cash", alias="paymentMethod")
    helper_brings: list[str] | None = Field(default=None, alias="helperBrings")
    customer_provides: list[str] | None = Field(default=None, alias="customerProvides")
    work_overview: str | None = Field(default=None, alias="workOverview")
    materials_needed: list[Any] | None = Field(default=None, alias="materialsNeeded")

    @field_validator(
        "category_id", "category_name", "flat_number", "floor", "selected_tier",
        "problem_duration", "error_code", "preferred_time", "urgency",
        mode="before",
    )
    @classmethod
    def _number_as_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("images", "helper_brings", "customer_provides", mode="before")
    @classmethod
    def _text_items(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_as_text(item) for item in value if item is not None]
        return value

    def to_input(self) -> BroadcastInput:
        return BroadcastInput(
            category_token=self.category_id,
            category_name=self.category_name,
            description=self.description,
            address=self.address,
            flat_number=self.flat_number,
            floor=self.floor,
            landmark=self.landmark,
            latitude=self.location_lat,
            longitude=self.location_lng,
            images=list(self.images or []),
            videos=list(self.videos or []),
            ai_analysis=dict(self.ai_analysis or {}),
            selected_tier=self.selected_tier,
            estimated_price=self.estimated_price,
            estimated_duration=self.estimated_duration,
            confidence=self.confidence,
            urgency=self.urgency,
            problem_duration=self.problem_duration,
            error_code=self.error_code,
            preferred_time=self.preferred_time,
            payment_method=self.payment_method or "cash",
            helper_brings=list(self.helper_brings or []),
            customer_provides=list(self.customer_provides or []),
            work_overview=self.work_overview,
            materials_needed=list(self.materials_needed or []),
        )


class BroadcastCreatedOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    request_id: str = Field(alias="requestId")
    helpers_notified: int = Field(default=0, alias="helpersNotified")


class BroadcastStatusOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId")
    dispatch_state: str = Field(alias="dispatchState")
    helpers_notified: int = Field(alias="helpersNotified")
    broadcast_status: str = Field(alias="broadcastStatus")
    broadcast_expires_at: datetime = Field(alias="broadcastExpiresAt")
