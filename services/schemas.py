"""
Request schemas for the Sophia API.
Bodies accept the camelCase keys used by the web client as well as snake_case names.
"""

from datetime import date
from typing import Annotated, List, Optional, Dict, Any
from urllib.parse import urlparse
from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field

from services.database import BusinessStatus


def _check_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid URL")
    return value


WebUrl = Annotated[str, AfterValidator(_check_url)]


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UpdateProfileRequest(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[WebUrl] = None


class ChangePasswordRequest(ApiModel):
    current_password: str = Field(alias="currentPassword", min_length=1)
    new_password: str = Field(alias="newPassword", min_length=8)


class BusinessCreate(ApiModel):
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=10, max_length=500)
    industry: str = Field(min_length=1, max_length=50)
    monthly_price: float = Field(alias="monthlyPrice", ge=0.01, le=10000)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    website_url: Optional[WebUrl] = Field(default=None, alias="websiteUrl")
    repository_url: Optional[WebUrl] = Field(default=None, alias="repositoryUrl")
    landing_page_url: Optional[WebUrl] = Field(default=None, alias="landingPageUrl")


class BusinessUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=500)
    industry: Optional[str] = Field(default=None, min_length=1, max_length=50)
    monthly_price: Optional[float] = Field(default=None, alias="monthlyPrice", ge=0.01, le=10000)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    website_url: Optional[WebUrl] = Field(default=None, alias="websiteUrl")
    repository_url: Optional[WebUrl] = Field(default=None, alias="repositoryUrl")
    landing_page_url: Optional[WebUrl] = Field(default=None, alias="landingPageUrl")
    stripe_product_id: Optional[str] = Field(default=None, alias="stripeProductId")
    stripe_price_id: Optional[str] = Field(default=None, alias="stripePriceId")


class StatusUpdate(ApiModel):
    status: BusinessStatus


class SetupTrackingRequest(ApiModel):
    business_id: str = Field(alias="businessId", min_length=1)
    website_url: WebUrl = Field(alias="websiteUrl")


class ConversionEventRequest(ApiModel):
    business_id: str = Field(alias="businessId", min_length=1)
    event_name: str = Field(alias="eventName", min_length=1, max_length=100)
    value: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class PeriodBody(ApiModel):
    start: Optional[date] = None
    end: Optional[date] = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None


class ComparePeriodsRequest(ApiModel):
    current_period: Optional[PeriodBody] = Field(default=None, alias="currentPeriod")
    previous_period: Optional[PeriodBody] = Field(default=None, alias="previousPeriod")


class MetricCreate(ApiModel):
    date: date
    visitors: int = Field(default=0, ge=0)
    conversions: int = Field(default=0, ge=0)
    revenue: float = Field(default=0, ge=0)
    bounce_rate: float = Field(default=0, alias="bounceRate", ge=0, le=100)
    session_duration: float = Field(default=0, alias="sessionDuration", ge=0)
    page_views: int = Field(default=0, alias="pageViews", ge=0)
    ad_spend: float = Field(default=0, alias="adSpend", ge=0)
    ad_clicks: int = Field(default=0, alias="adClicks", ge=0)
    ad_impressions: int = Field(default=0, alias="adImpressions", ge=0)
    new_subscriptions: int = Field(default=0, alias="newSubscriptions", ge=0)
    cancelled_subscriptions: int = Field(default=0, alias="cancelledSubscriptions", ge=0)


class SyncMetricsRequest(ApiModel):
    start: date
    end: date


class MarketAnalysisRequest(ApiModel):
    industry: str = Field(min_length=1, max_length=100)


class BusinessIdeaRequest(ApiModel):
    industry: Optional[str] = Field(default=None, min_length=1, max_length=100)


class BusinessIdea(ApiModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    industry: str = Field(min_length=1, max_length=100)
    target_market: str = Field(alias="targetMarket", min_length=1)
    business_model: str = Field(default="Subscription", alias="businessModel")
    estimated_revenue: float = Field(default=0, alias="estimatedRevenue", ge=0)
    competition_analysis: List[str] = Field(default_factory=list, alias="competitionAnalysis")
    market_opportunity: str = Field(default="", alias="marketOpportunity")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class RecommendActionsRequest(ApiModel):
    metrics: Dict[str, Any] = Field(default_factory=dict)


class StripeProductRequest(ApiModel):
    business_id: str = Field(alias="businessId", min_length=1)


class CheckoutSessionRequest(ApiModel):
    business_id: str = Field(alias="businessId", min_length=1)
    success_url: Optional[WebUrl] = Field(default=None, alias="successUrl")
    cancel_url: Optional[WebUrl] = Field(default=None, alias="cancelUrl")
