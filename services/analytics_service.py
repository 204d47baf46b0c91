"""
Analytics service for Sophia.
Aggregates stored daily metrics, interprets them, and provisions / reads
Google Analytics 4 tracking for businesses.
"""

import logging
from datetime import date, timedelta
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from services import analytics_insights as insights
from services.business_service import BusinessService
from services.config import GA_TIME_ZONE, GA_CURRENCY_CODE, GA_INDUSTRY_CATEGORY
from services.database import Business, BusinessMetric, ConversionEvent
from services.errors import BusinessRuleError, IntegrationError, NotFoundError, UnauthorizedError
from services.google_analytics import GoogleAnalyticsClient

logger = logging.getLogger(__name__)

REPORT_METRICS = [
    "activeUsers",
    "conversions",
    "totalRevenue",
    "bounceRate",
    "averageSessionDuration",
    "screenPageViews",
]

TREND_METRICS = {
    "activeUsers": "visitors",
    "conversions": "conversions",
    "revenue": "revenue",
    "bounceRate": "bounce_rate",
    "pageViews": "page_views",
}

PERIOD_DAYS = {"week": 7, "month": 30, "quarter": 90}

METRIC_FIELDS = (
    "visitors", "conversions", "revenue", "bounce_rate", "session_duration", "page_views",
    "ad_spend", "ad_clicks", "ad_impressions", "new_subscriptions", "cancelled_subscriptions",
)

DASHBOARD_URL = "https://analytics.google.com/analytics/web/#/realtime/rt-overview/a/properties/{property_id}"


def generate_gtm_code(measurement_id: str) -> str:
    """Standard gtag.js snippet for a GA4 measurement ID."""
    return (
        "<!-- Google tag (gtag.js) -->\n"
        f"<script async src=\"https://www.googletagmanager.com/gtag/js?id={measurement_id}\"></script>\n"
        "<script>\n"
        "  window.dataLayer = window.dataLayer || [];\n"
        "  function gtag(){dataLayer.push(arguments);}\n"
        "  gtag('js', new Date());\n"
        f"  gtag('config', '{measurement_id}');\n"
        "</script>"
    )


def _report_value(row: Dict[str, Any], index: int, cast):
    values = row.get("metricValues") or []
    try:
        return cast(float(values[index].get("value") or 0))
    except (IndexError, TypeError, ValueError):
        return cast(0)


def _report_date(raw: str) -> str:
    """GA reports dates as YYYYMMDD."""
    if len(raw) == 8 and raw.isdigit():
        return f"{raw[:4]}-{raw[4:6]}-{raw[6:]}"
    return raw


def validate_trend_request(metric: str, period: str):
    if metric not in TREND_METRICS:
        raise BusinessRuleError(f"Invalid metric. Valid options: {', '.join(TREND_METRICS)}")
    if period not in PERIOD_DAYS:
        raise BusinessRuleError(f"Invalid period. Valid options: {', '.join(PERIOD_DAYS)}")


def empty_aggregate(start: date, end: date) -> Dict[str, Any]:
    return {
        "date": f"{start.isoformat()}_{end.isoformat()}",
        "activeUsers": 0,
        "conversions": 0,
        "totalRevenue": 0.0,
        "bounceRate": 0.0,
        "sessionDuration": 0.0,
        "pageViews": 0,
    }


class AnalyticsService:
    """Metrics aggregation and Google Analytics integration."""

    def __init__(
        self,
        business_service: BusinessService,
        ga_client: Optional[GoogleAnalyticsClient] = None
    ):
        self.business_service = business_service
        self.ga_client = ga_client or GoogleAnalyticsClient()

    def get_business_for_owner(
        self,
        db: Session,
        business_id: str,
        owner_id: str,
        require_tracking: bool = True
    ) -> Business:
        """
        Resolve a business for an analytics request. Missing and foreign
        businesses look the same to the caller.
        """
        try:
            business = self.business_service.get_by_id(db, business_id, owner_id)
        except UnauthorizedError:
            business = None
        if not business:
            raise NotFoundError("Business not found or access denied")
        if require_tracking and not business.has_analytics:
            raise BusinessRuleError("Analytics tracking is not configured for this business")
        return business

    def _rows_between(self, db: Session, business_id: str, start: date, end: date) -> List[BusinessMetric]:
        return (
            db.query(BusinessMetric)
            .filter(
                BusinessMetric.business_id == business_id,
                BusinessMetric.date >= start,
                BusinessMetric.date <= end,
            )
            .order_by(BusinessMetric.date.asc())
            .all()
        )

    def aggregate_metrics_for_range(self, db: Session, business_id: str, start: date, end: date) -> Dict[str, Any]:
        """
        Sum additive metrics and average rate metrics over stored rows in [start, end].
        Rates are a plain mean over days, not weighted by traffic.
        """
        rows = self._rows_between(db, business_id, start, end)
        aggregated = empty_aggregate(start, end)
        if not rows:
            return aggregated

        for row in rows:
            aggregated["activeUsers"] += row.visitors or 0
            aggregated["conversions"] += row.conversions or 0
            aggregated["totalRevenue"] += row.revenue or 0
            aggregated["pageViews"] += row.page_views or 0
            aggregated["bounceRate"] += row.bounce_rate or 0
            aggregated["sessionDuration"] += row.session_duration or 0

        aggregated["bounceRate"] /= len(rows)
        aggregated["sessionDuration"] /= len(rows)
        return aggregated

    def aggregate_metrics(self, db: Session, business_id: str, days: int = 30) -> Dict[str, Any]:
        """Aggregate the `days` calendar days ending today."""
        end = date.today()
        start = end - timedelta(days=max(days, 1) - 1)
        return self.aggregate_metrics_for_range(db, business_id, start, end)

    def compare_periods(
        self,
        db: Session,
        business_id: str,
        current_start: date,
        current_end: date,
        previous_start: date,
        previous_end: date
    ) -> Dict[str, Any]:
        current = self.aggregate_metrics_for_range(db, business_id, current_start, current_end)
        previous = self.aggregate_metrics_for_range(db, business_id, previous_start, previous_end)
        trends = insights.calculate_period_trends(current, previous)
        return {
            "currentPeriod": current,
            "previousPeriod": previous,
            "trends": trends,
            "insights": insights.generate_trend_insights(trends, current),
        }

    def get_business_insights(self, db: Session, business_id: str, days: int = 30) -> Dict[str, Any]:
        """Score the last `days` days against the window of equal length before it."""
        days = max(days, 1)
        today = date.today()
        current_start = today - timedelta(days=days - 1)
        previous_end = current_start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=days - 1)

        current = self.aggregate_metrics_for_range(db, business_id, current_start, today)
        previous = self.aggregate_metrics_for_range(db, business_id, previous_start, previous_end)

        return {
            "performanceScore": insights.calculate_performance_score(current),
            "keyMetrics": insights.build_key_metrics(current, previous),
            "recommendations": insights.generate_recommendations(current),
            "predictions": insights.generate_predictions(current, previous),
        }

    def get_trend_analysis(self, db: Session, business_id: str, metric: str, period: str = "month") -> Dict[str, Any]:
        validate_trend_request(metric, period)

        end = date.today()
        start = end - timedelta(days=PERIOD_DAYS[period] - 1)
        column = TREND_METRICS[metric]
        points = [(row.date, float(getattr(row, column) or 0)) for row in self._rows_between(db, business_id, start, end)]
        values = [value for _, value in points]

        trend = insights.analyze_trend(values)
        return {
            "trend": trend["direction"],
            "strength": trend["strength"],
            "data": [{"date": day.isoformat(), "value": value} for day, value in points],
            "seasonality": insights.detect_seasonality(points),
            "forecast": insights.forecast_next_period(values),
        }

    def setup_tracking(self, db: Session, business: Business, website_url: str) -> Dict[str, str]:
        """Provision a GA4 property and web stream and store their IDs on the business."""
        if business.has_analytics:
            raise BusinessRuleError("Analytics tracking is already configured for this business")

        try:
            ga_property = self.ga_client.create_property(
                display_name=business.name,
                time_zone=GA_TIME_ZONE,
                currency_code=GA_CURRENCY_CODE,
                industry_category=GA_INDUSTRY_CATEGORY,
            )
            property_name = ga_property.get("name") or ""
            property_id = property_name.split("/")[1] if "/" in property_name else ""
            if not property_id:
                raise IntegrationError("Failed to setup Analytics tracking: no property returned")

            stream = self.ga_client.create_web_stream(
                property_name=property_name,
                display_name=f"{business.name} - Web Stream",
                default_uri=website_url,
            )
        except IntegrationError:
            raise
        except Exception as e:
            logger.error("Analytics setup failed for business %s: %s", business.id, e)
            raise IntegrationError(f"Failed to setup Analytics tracking: {e}")

        measurement_id = (stream.get("webStreamData") or {}).get("measurementId")
        stream_parts = (stream.get("name") or "").split("/")
        stream_id = stream_parts[3] if len(stream_parts) > 3 else None
        if not measurement_id or not stream_id:
            raise IntegrationError("Failed to setup Analytics tracking: data stream was not created")

        self.business_service.update_analytics_info(db, business.id, property_id, measurement_id, stream_id)
        if not business.website_url:
            business.website_url = website_url
            db.commit()

        logger.info("Analytics tracking configured for business %s (property %s)", business.id, property_id)
        return {
            "trackingId": measurement_id,
            "gtmCode": generate_gtm_code(measurement_id),
            "propertyId": property_id,
        }

    def get_metrics(self, property_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Daily report rows mapped to the internal shape; absent values become 0."""
        try:
            report = self.ga_client.run_report(property_id, start, end, REPORT_METRICS, ["date"])
        except Exception as e:
            logger.error("Analytics report failed for property %s: %s", property_id, e)
            raise IntegrationError(f"Failed to fetch Analytics metrics: {e}")

        metrics = []
        for row in report.get("rows") or []:
            dimensions = row.get("dimensionValues") or [{}]
            metrics.append({
                "date": _report_date(dimensions[0].get("value") or ""),
                "activeUsers": _report_value(row, 0, int),
                "conversions": _report_value(row, 1, int),
                "totalRevenue": _report_value(row, 2, float),
                "bounceRate": _report_value(row, 3, float),
                "sessionDuration": _report_value(row, 4, float),
                "pageViews": _report_value(row, 5, int),
            })
        return metrics

    def sync_metrics(self, db: Session, business: Business, start: date, end: date) -> List[BusinessMetric]:
        """Pull the GA daily report for [start, end] into stored metrics."""
        stored = []
        for day in self.get_metrics(business.analytics_property_id, start.isoformat(), end.isoformat()):
            try:
                day_date = date.fromisoformat(day["date"])
            except ValueError:
                logger.warning("Skipping report row with unparseable date %r", day["date"])
                continue
            stored.append(self.record_metric(db, business.id, {
                "date": day_date,
                "visitors": day["activeUsers"],
                "conversions": day["conversions"],
                "revenue": day["totalRevenue"],
                "bounce_rate": day["bounceRate"],
                "session_duration": day["sessionDuration"],
                "page_views": day["pageViews"],
            }))
        logger.info("Synced %d metric rows for business %s", len(stored), business.id)
        return stored

    def record_metric(self, db: Session, business_id: str, payload: Dict[str, Any]) -> BusinessMetric:
        """Insert or overwrite the stored metrics for one business day."""
        row = db.query(BusinessMetric).filter(
            BusinessMetric.business_id == business_id,
            BusinessMetric.date == payload["date"]
        ).first()
        if not row:
            row = BusinessMetric(business_id=business_id, date=payload["date"])
            db.add(row)
        for field in METRIC_FIELDS:
            if field in payload and payload[field] is not None:
                setattr(row, field, payload[field])
        db.commit()
        db.refresh(row)
        return row

    def get_realtime_metrics(self, property_id: str) -> Dict[str, int]:
        try:
            report = self.ga_client.run_realtime_report(property_id, ["activeUsers"])
            rows = report.get("rows") or []
            active_users = _report_value(rows[0], 0, int) if rows else 0
            return {"activeUsers": active_users}
        except Exception as e:
            logger.warning("Realtime metrics unavailable for property %s: %s", property_id, e)
            return {"activeUsers": 0}

    def create_custom_dashboard(self, business: Business) -> Dict[str, str]:
        if not business.has_analytics:
            raise BusinessRuleError("Analytics tracking is not configured for this business")
        return {"dashboardUrl": DASHBOARD_URL.format(property_id=business.analytics_property_id)}

    def track_conversion(
        self,
        db: Session,
        business_id: str,
        event_name: str,
        value: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[ConversionEvent]:
        """Record a conversion. Best-effort: failures are logged and None is returned."""
        try:
            event = self.business_service.log_conversion(db, business_id, event_name, value, metadata)
            logger.info("Conversion tracked for business %s: %s (value=%s)", business_id, event_name, value)
            return event
        except Exception as e:
            db.rollback()
            logger.error("Error tracking conversion for business %s: %s", business_id, e)
            return None
