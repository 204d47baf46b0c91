"""
Sophia API.
FastAPI application exposing auth, business, analytics, monitoring, AI and Stripe routes.
Every response uses the envelope {success, message?, data?, errors?}.
"""

import logging
from datetime import datetime
from typing import Optional, Any, Dict

from fastapi import FastAPI, Request, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session

from services import auth
from services import stripe_client
from services.ai_agent import SophiaAIAgent
from services.analytics_service import AnalyticsService, validate_trend_request
from services.business_service import BusinessService
from services.config import (
    LOG_LEVEL, JWT_SECRET, DEFAULT_JWT_SECRET,
    is_google_analytics_enabled, is_openai_enabled, is_stripe_enabled,
)
from services.database import init_db, get_db, Business, BusinessStatus, User
from services.errors import SophiaError, BusinessRuleError, NotFoundError
from services.monitoring import WebsiteMonitoringService
from services.schemas import (
    RegisterRequest, LoginRequest, UpdateProfileRequest, ChangePasswordRequest,
    BusinessCreate, BusinessUpdate, StatusUpdate,
    SetupTrackingRequest, ConversionEventRequest, ComparePeriodsRequest, MetricCreate, SyncMetricsRequest,
    MarketAnalysisRequest, BusinessIdeaRequest, BusinessIdea, RecommendActionsRequest,
    StripeProductRequest, CheckoutSessionRequest,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Sophia API")

business_service = BusinessService()
analytics_service = AnalyticsService(business_service)
monitoring_service = WebsiteMonitoringService()
ai_agent = SophiaAIAgent()

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


def get_business_service() -> BusinessService:
    return business_service


def get_analytics_service() -> AnalyticsService:
    return analytics_service


def get_monitoring_service() -> WebsiteMonitoringService:
    return monitoring_service


def get_ai_agent() -> SophiaAIAgent:
    return ai_agent


def respond(data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra) -> JSONResponse:
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def get_owned_business(db: Session, business_id: str, user: User, service: BusinessService) -> Business:
    business = service.get_by_id(db, business_id, user.id)
    if not business:
        raise NotFoundError("Business not found")
    return business


@app.on_event("startup")
async def startup():
    init_db()
    if JWT_SECRET == DEFAULT_JWT_SECRET:
        logger.warning("JWT_SECRET is not set; using the development default. Set it for production use.")
    logger.info(
        "Sophia API started (google_analytics=%s, openai=%s, stripe=%s)",
        is_google_analytics_enabled(), is_openai_enabled(), is_stripe_enabled()
    )


@app.exception_handler(SophiaError)
async def sophia_error_handler(request: Request, exc: SophiaError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", []) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location), "message": error.get("msg", "Invalid value")})
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errors": errors},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


@app.get("/health")
async def health():
    return {"success": True, "status": "ok", "timestamp": datetime.utcnow().isoformat()}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@app.post("/api/auth/register")
async def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    user, token = auth.register_user(db, payload.email, payload.password, payload.name)
    return respond({"user": user.to_dict(), "token": token}, "User registered successfully", 201)


@app.post("/api/auth/login")
async def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user, token = auth.login_user(db, payload.email, payload.password)
    return respond({"user": user.to_dict(), "token": token}, "Login successful")


@app.get("/api/auth/profile")
async def get_profile(user: User = Depends(auth.require_user)):
    return respond({"user": user.to_dict()})


@app.put("/api/auth/profile")
async def update_profile(
    payload: UpdateProfileRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db)
):
    user = auth.update_profile(db, user, payload.name, payload.avatar)
    return respond({"user": user.to_dict()}, "Profile updated successfully")


@app.post("/api/auth/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db)
):
    auth.change_password(db, user, payload.current_password, payload.new_password)
    return respond(message="Password changed successfully")


@app.post("/api/auth/refresh-token")
async def refresh_token(user: User = Depends(auth.require_user)):
    return respond({"token": auth.refresh_token(user)}, "Token refreshed successfully")


@app.delete("/api/auth/account")
async def delete_account(user: User = Depends(auth.require_user), db: Session = Depends(get_db)):
    auth.delete_account(db, user)
    return respond(message="Account deleted successfully")


# ---------------------------------------------------------------------------
# Businesses
# ---------------------------------------------------------------------------

@app.get("/api/businesses")
async def list_businesses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    result = service.get_businesses_by_owner(db, user.id, page, limit)
    return respond([b.to_dict() for b in result["businesses"]], pagination=result["pagination"])


@app.post("/api/businesses")
async def create_business(
    payload: BusinessCreate,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = service.create(db, payload.model_dump(), user.id)
    return respond(business.to_dict(), "Business created successfully", 201)


@app.get("/api/businesses/search")
async def search_businesses(
    q: Optional[str] = None,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    if not q or not q.strip():
        raise BusinessRuleError("Search query is required")
    return respond([b.to_dict() for b in service.search(db, q, user.id)])


@app.get("/api/businesses/statistics")
async def business_statistics(
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    return respond(service.get_statistics(db, user.id))


@app.get("/api/businesses/active")
async def active_businesses(
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    businesses = service.get_by_status(db, BusinessStatus.ACTIVE, user.id)
    return respond([b.to_dict() for b in businesses])


@app.get("/api/businesses/status/{status}")
async def businesses_by_status(
    status: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    try:
        wanted = BusinessStatus(status.upper())
    except ValueError:
        raise BusinessRuleError(f"Invalid status. Valid options: {', '.join(s.value for s in BusinessStatus)}")
    return respond([b.to_dict() for b in service.get_by_status(db, wanted, user.id)])


@app.get("/api/businesses/{business_id}")
async def get_business(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    return respond(get_owned_business(db, business_id, user, service).to_dict())


@app.get("/api/businesses/{business_id}/details")
async def get_business_details(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    return respond(service.get_with_details(db, business_id, user.id))


@app.put("/api/businesses/{business_id}")
async def update_business(
    business_id: str,
    payload: BusinessUpdate,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = service.update(db, business_id, payload.model_dump(exclude_unset=True), user.id)
    return respond(business.to_dict(), "Business updated successfully")


@app.patch("/api/businesses/{business_id}/status")
async def update_business_status(
    business_id: str,
    payload: StatusUpdate,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = service.update_status(db, business_id, payload.status, user.id)
    return respond(business.to_dict(), "Business status updated successfully")


@app.delete("/api/businesses/{business_id}")
async def delete_business(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    service.delete(db, business_id, user.id)
    return respond(message="Business deleted successfully")


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@app.post("/api/analytics/setup")
async def setup_tracking(
    payload: SetupTrackingRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, payload.business_id, user.id, require_tracking=False)
    tracking = analytics.setup_tracking(db, business, payload.website_url)
    return respond(tracking, "Analytics tracking setup successfully", 201)


@app.post("/api/analytics/track-conversion")
async def track_conversion(
    payload: ConversionEventRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, payload.business_id, user.id, require_tracking=False)
    analytics.track_conversion(db, business.id, payload.event_name, payload.value, payload.metadata)
    return respond(
        {
            "businessId": business.id,
            "eventName": payload.event_name,
            "value": payload.value,
            "timestamp": datetime.utcnow().isoformat(),
        },
        "Conversion event tracked successfully",
        201,
    )


@app.get("/api/analytics/{business_id}/metrics")
async def get_metrics(
    business_id: str,
    start: str = Query(..., pattern=DATE_PATTERN),
    end: str = Query(..., pattern=DATE_PATTERN),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    metrics = analytics.get_metrics(business.analytics_property_id, start, end)
    return respond({"businessId": business.id, "dateRange": {"start": start, "end": end}, "metrics": metrics})


@app.post("/api/analytics/{business_id}/metrics")
async def record_metric(
    business_id: str,
    payload: MetricCreate,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id, require_tracking=False)
    metric = analytics.record_metric(db, business.id, payload.model_dump())
    return respond(metric.to_dict(), "Metric recorded successfully", 201)


@app.post("/api/analytics/{business_id}/sync")
async def sync_metrics(
    business_id: str,
    payload: SyncMetricsRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    rows = analytics.sync_metrics(db, business, payload.start, payload.end)
    return respond({"businessId": business.id, "synced": len(rows)}, "Metrics synced successfully")


@app.get("/api/analytics/{business_id}/summary")
async def get_summary(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    summary = analytics.aggregate_metrics(db, business.id, days)
    return respond({"businessId": business.id, "period": f"{days} days", "summary": summary})


@app.get("/api/analytics/{business_id}/realtime")
async def get_realtime(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    return respond({
        "businessId": business.id,
        "realTime": analytics.get_realtime_metrics(business.analytics_property_id),
        "timestamp": datetime.utcnow().isoformat(),
    })


@app.get("/api/analytics/{business_id}/dashboard")
async def get_dashboard(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    dashboard = analytics.create_custom_dashboard(business)
    return respond({"businessId": business.id, "dashboardUrl": dashboard["dashboardUrl"]})


@app.get("/api/analytics/{business_id}/conversions")
async def get_conversions(
    business_id: str,
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id, require_tracking=False)
    events = analytics.business_service.get_conversion_events(db, business.id, limit)
    return respond({"businessId": business.id, "conversions": [e.to_dict() for e in events]})


@app.post("/api/analytics/{business_id}/compare-periods")
async def compare_periods(
    business_id: str,
    payload: ComparePeriodsRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    current, previous = payload.current_period, payload.previous_period
    if not current or not previous or not current.is_complete or not previous.is_complete:
        raise BusinessRuleError("Both currentPeriod and previousPeriod with start/end dates are required")

    business = analytics.get_business_for_owner(db, business_id, user.id)
    comparison = analytics.compare_periods(
        db, business.id, current.start, current.end, previous.start, previous.end
    )
    return respond({"businessId": business.id, "comparison": comparison})


@app.get("/api/analytics/{business_id}/insights")
async def get_insights(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    business = analytics.get_business_for_owner(db, business_id, user.id)
    insights = analytics.get_business_insights(db, business.id, days)
    return respond({"businessId": business.id, "period": f"{days} days", "insights": insights})


@app.get("/api/analytics/{business_id}/trend/{metric}")
async def get_trend(
    business_id: str,
    metric: str,
    period: str = "month",
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service)
):
    validate_trend_request(metric, period)
    business = analytics.get_business_for_owner(db, business_id, user.id)
    analysis = analytics.get_trend_analysis(db, business.id, metric, period)
    return respond({"businessId": business.id, "metric": metric, "period": period, "analysis": analysis})


# ---------------------------------------------------------------------------
# Website monitoring
# ---------------------------------------------------------------------------

@app.get("/api/monitoring/{business_id}/health")
async def website_health(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service),
    monitoring: WebsiteMonitoringService = Depends(get_monitoring_service)
):
    business = get_owned_business(db, business_id, user, service)
    return respond(await monitoring.check_website_health(business))


@app.get("/api/monitoring/{business_id}/performance")
async def website_performance(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service),
    monitoring: WebsiteMonitoringService = Depends(get_monitoring_service)
):
    business = get_owned_business(db, business_id, user, service)
    return respond(await monitoring.run_performance_audit(business))


@app.post("/api/monitoring/{business_id}/payment-flow")
async def website_payment_flow(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service),
    monitoring: WebsiteMonitoringService = Depends(get_monitoring_service)
):
    business = get_owned_business(db, business_id, user, service)
    return respond(await monitoring.test_payment_flow(business))


@app.post("/api/monitoring/{business_id}/screenshot")
async def website_screenshot(
    business_id: str,
    page: str = Query("homepage", min_length=1, max_length=50, pattern=r"^[A-Za-z0-9_-]+$"),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service),
    monitoring: WebsiteMonitoringService = Depends(get_monitoring_service)
):
    business = get_owned_business(db, business_id, user, service)
    file_name = await monitoring.capture_screenshot(business, page)
    return respond({"businessId": business.id, "fileName": file_name}, "Screenshot captured", 201)


# ---------------------------------------------------------------------------
# AI agent
# ---------------------------------------------------------------------------

@app.post("/api/ai/market-analysis")
async def market_analysis(
    payload: MarketAnalysisRequest,
    user: User = Depends(auth.require_user),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    return respond(agent.analyze_market_opportunity(payload.industry))


@app.post("/api/ai/business-idea")
async def business_idea(
    payload: BusinessIdeaRequest,
    user: User = Depends(auth.require_user),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    return respond(agent.generate_business_idea(payload.industry))


@app.post("/api/ai/business-plan")
async def business_plan(
    payload: BusinessIdea,
    user: User = Depends(auth.require_user),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    plan = agent.generate_business_plan(payload.to_dict())
    return respond({"plan": plan, "developmentPlan": agent.orchestrate_development(plan)})


@app.post("/api/ai/recommendations")
async def recommendations(
    payload: RecommendActionsRequest,
    user: User = Depends(auth.require_user),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    return respond(agent.recommend_actions(payload.metrics))


@app.get("/api/ai/projects/{project_id}/progress")
async def project_progress(
    project_id: str,
    user: User = Depends(auth.require_user),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    return respond(agent.monitor_development_progress(project_id))


@app.get("/api/ai/businesses/{business_id}/evaluation")
async def evaluate_business(
    business_id: str,
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    analytics: AnalyticsService = Depends(get_analytics_service),
    agent: SophiaAIAgent = Depends(get_ai_agent)
):
    business = analytics.get_business_for_owner(db, business_id, user.id, require_tracking=False)
    metrics = analytics.aggregate_metrics(db, business.id, days)
    return respond({
        "businessId": business.id,
        "metrics": metrics,
        "decision": agent.evaluate_business_performance(business.id, metrics),
        "actions": agent.recommend_actions(metrics),
    })


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

@app.post("/api/stripe/setup-product")
async def stripe_setup_product(
    payload: StripeProductRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = get_owned_business(db, payload.business_id, user, service)
    ids = stripe_client.create_subscription_product(business)
    business = service.update_stripe_data(db, business.id, ids["productId"], ids["priceId"])
    return respond(
        {"businessId": business.id, "productId": business.stripe_product_id, "priceId": business.stripe_price_id},
        "Stripe product created successfully",
        201,
    )


@app.post("/api/stripe/create-checkout-session")
async def stripe_checkout_session(
    payload: CheckoutSessionRequest,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = get_owned_business(db, payload.business_id, user, service)
    if not business.stripe_price_id:
        raise BusinessRuleError("Stripe product is not configured for this business")
    session = stripe_client.create_checkout_session(
        business, business.stripe_price_id, payload.success_url, payload.cancel_url
    )
    return respond(session)


@app.get("/api/stripe/subscription/{business_id}")
async def stripe_subscription_status(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = get_owned_business(db, business_id, user, service)
    subscriptions = []
    if business.stripe_customer_id:
        subscriptions = stripe_client.list_customer_subscriptions(business.stripe_customer_id)
    return respond({
        "businessId": business.id,
        "subscriptionStatus": business.subscription_status,
        "stripeCustomerId": business.stripe_customer_id,
        "stripeSubscriptionId": business.stripe_subscription_id,
        "currentPeriodStart": business.current_period_start,
        "currentPeriodEnd": business.current_period_end,
        "subscriptions": subscriptions,
    })


@app.delete("/api/stripe/subscription/{business_id}")
async def stripe_cancel_subscription(
    business_id: str,
    user: User = Depends(auth.require_user),
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    business = get_owned_business(db, business_id, user, service)
    if not business.stripe_subscription_id:
        raise BusinessRuleError("No active subscription found")
    canceled = stripe_client.cancel_subscription(business.stripe_subscription_id)
    service.update_subscription_status(
        db, business.id,
        subscription_id=canceled["id"],
        status=canceled["status"],
        current_period_start=canceled["currentPeriodStart"],
        current_period_end=canceled["currentPeriodEnd"],
    )
    return respond(
        {"subscriptionId": canceled["id"], "status": canceled["status"]},
        "Subscription canceled successfully",
    )


@app.post("/api/stripe/webhooks/{business_id}")
async def stripe_webhook(
    business_id: str,
    request: Request,
    db: Session = Depends(get_db),
    service: BusinessService = Depends(get_business_service)
):
    """Stripe calls this without a bearer token; the signature authenticates it."""
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        raise BusinessRuleError("Missing stripe-signature header")
    payload = await request.body()
    event = stripe_client.verify_webhook_signature(payload, sig_header)

    business = service.get_by_id(db, business_id)
    if not business:
        raise NotFoundError("Business not found")
    stripe_client.apply_webhook_event(db, service, business.id, event)
    return respond({"received": True})
