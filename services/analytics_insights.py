"""
Closed-form analytics helpers for Sophia.

Everything here is pure arithmetic over aggregated metrics or short daily
series (tens of points). The analytics service feeds these with rows read
from the database; nothing in this module touches I/O.

Aggregated metrics are plain dicts with the keys produced by
AnalyticsService.aggregate_metrics: activeUsers, conversions, totalRevenue,
bounceRate, sessionDuration, pageViews.
"""

from datetime import date
from statistics import fmean, pstdev
from typing import Dict, Any, List, Tuple

TREND_BAND_PERCENT = 5.0
VOLATILITY_THRESHOLD = 0.5
SLOPE_THRESHOLD = 0.01
SEASONALITY_MIN_POINTS = 14
SEASONALITY_THRESHOLD = 0.3
FORECAST_WINDOW = 3


def calculate_percentage_change(old_value: float, new_value: float) -> float:
    """Percent change from old to new. A zero baseline gives 100 for growth, else 0."""
    if old_value == 0:
        return 100.0 if new_value > 0 else 0.0
    return (new_value - old_value) / old_value * 100


def determine_trend(current: float, previous: float) -> str:
    change = calculate_percentage_change(previous, current)
    if change > TREND_BAND_PERCENT:
        return "up"
    if change < -TREND_BAND_PERCENT:
        return "down"
    return "stable"


def conversion_rate_percent(metrics: Dict[str, Any]) -> float:
    active_users = metrics.get("activeUsers", 0)
    if active_users <= 0:
        return 0.0
    return metrics.get("conversions", 0) / active_users * 100


def _bucket(value: float, breakpoints: Tuple[float, float, float, float], lower_is_better: bool = False) -> int:
    points = (25, 20, 15, 10)
    for threshold, score in zip(breakpoints, points):
        if (value < threshold) if lower_is_better else (value > threshold):
            return score
    return 5


def calculate_performance_score(metrics: Dict[str, Any]) -> int:
    """0-100 composite of four 5-25 point buckets."""
    score = 0
    score += _bucket(metrics.get("activeUsers", 0), (1000, 500, 100, 50))
    score += _bucket(conversion_rate_percent(metrics), (5, 3, 2, 1))
    score += _bucket(metrics.get("bounceRate", 0), (30, 50, 60, 70), lower_is_better=True)
    score += _bucket(metrics.get("totalRevenue", 0), (10000, 5000, 1000, 500))
    return min(score, 100)


def get_benchmark(metric: str, value: float) -> str:
    """
    Human-readable benchmark band for a key metric.
    conversionRate takes a fraction (conversions / users), not a percentage.
    """
    if metric == "activeUsers":
        if value < 100:
            return "Low: <100"
        return "Average: 100-1000" if value < 1000 else "High: >1000"
    if metric == "conversionRate":
        rate = value * 100
        if rate < 1:
            return "Low: <1%"
        return "Average: 1-3%" if rate < 3 else "High: >3%"
    if metric == "revenue":
        if value < 1000:
            return "Low: <$1000"
        return "Average: $1000-$10000" if value < 10000 else "High: >$10000"
    if metric == "bounceRate":
        if value < 30:
            return "Excellent: <30%"
        return "Good: 30-50%" if value < 50 else "Poor: >50%"
    return "No benchmark available"


def generate_recommendations(metrics: Dict[str, Any]) -> List[Dict[str, str]]:
    recommendations = []

    if metrics.get("bounceRate", 0) > 60:
        recommendations.append({
            "priority": "high",
            "category": "User Experience",
            "title": "Reduce Bounce Rate",
            "description": "Your bounce rate is high. Improve page load speed, content relevance, and user experience.",
            "expectedImpact": "+15-25% user engagement",
        })

    if conversion_rate_percent(metrics) < 1:
        recommendations.append({
            "priority": "high",
            "category": "Conversion Optimization",
            "title": "Improve Conversion Funnel",
            "description": "Low conversion rate detected. Optimize your call-to-action buttons and checkout process.",
            "expectedImpact": "+50-100% conversions",
        })

    if metrics.get("activeUsers", 0) < 100:
        recommendations.append({
            "priority": "medium",
            "category": "Traffic Growth",
            "title": "Increase Marketing Efforts",
            "description": "Low traffic volume. Consider increasing marketing spend or improving SEO.",
            "expectedImpact": "+200-500% traffic",
        })

    return recommendations


def generate_predictions(current: Dict[str, Any], previous: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Project the next period by repeating the last period's growth rate."""
    predictions = []
    for label, key in (("Active Users", "activeUsers"), ("Revenue", "totalRevenue")):
        growth = calculate_percentage_change(previous.get(key, 0), current.get(key, 0)) / 100
        predictions.append({
            "metric": label,
            "predicted30Days": round(current.get(key, 0) * (1 + growth)),
            "confidence": min(max(0.5, 1 - abs(growth)), 0.95),
        })
    return predictions


def build_key_metrics(current: Dict[str, Any], previous: Dict[str, Any]) -> List[Dict[str, Any]]:
    current_rate = current["conversions"] / max(current["activeUsers"], 1)
    previous_rate = previous["conversions"] / max(previous["activeUsers"], 1)
    return [
        {
            "metric": "Active Users",
            "value": current["activeUsers"],
            "change": calculate_percentage_change(previous["activeUsers"], current["activeUsers"]),
            "trend": determine_trend(current["activeUsers"], previous["activeUsers"]),
            "benchmark": get_benchmark("activeUsers", current["activeUsers"]),
        },
        {
            "metric": "Conversion Rate",
            "value": conversion_rate_percent(current),
            "change": calculate_percentage_change(previous_rate, current_rate),
            "trend": determine_trend(current_rate, previous_rate),
            "benchmark": get_benchmark("conversionRate", current_rate),
        },
        {
            "metric": "Revenue",
            "value": current["totalRevenue"],
            "change": calculate_percentage_change(previous["totalRevenue"], current["totalRevenue"]),
            "trend": determine_trend(current["totalRevenue"], previous["totalRevenue"]),
            "benchmark": get_benchmark("revenue", current["totalRevenue"]),
        },
        {
            "metric": "Bounce Rate",
            "value": current["bounceRate"],
            "change": calculate_percentage_change(previous["bounceRate"], current["bounceRate"]),
            # arguments swapped: a falling bounce rate is an improvement
            "trend": determine_trend(previous["bounceRate"], current["bounceRate"]),
            "benchmark": get_benchmark("bounceRate", current["bounceRate"]),
        },
    ]


def calculate_period_trends(current: Dict[str, Any], previous: Dict[str, Any]) -> Dict[str, float]:
    return {
        "activeUsersChange": calculate_percentage_change(previous["activeUsers"], current["activeUsers"]),
        "conversionsChange": calculate_percentage_change(previous["conversions"], current["conversions"]),
        "revenueChange": calculate_percentage_change(previous["totalRevenue"], current["totalRevenue"]),
        "bounceRateChange": calculate_percentage_change(previous["bounceRate"], current["bounceRate"]),
        "pageViewsChange": calculate_percentage_change(previous["pageViews"], current["pageViews"]),
    }


def generate_trend_insights(trends: Dict[str, float], current: Dict[str, Any]) -> List[str]:
    insights = []

    users_change = trends["activeUsersChange"]
    if users_change > 20:
        insights.append(f"Active users increased by {users_change:.1f}% - strong growth momentum")
    elif users_change < -20:
        insights.append(f"Active users decreased by {abs(users_change):.1f}% - attention needed")

    if trends["conversionsChange"] > 15:
        insights.append(f"Conversions improved by {trends['conversionsChange']:.1f}% - effective optimization")

    if trends["revenueChange"] > 25:
        insights.append(f"Revenue grew by {trends['revenueChange']:.1f}% - excellent financial performance")

    if current["bounceRate"] > 70:
        insights.append(f"High bounce rate ({current['bounceRate']:.1f}%) indicates user experience issues")

    return insights


def linear_regression_slope(values: List[float]) -> float:
    """Ordinary least-squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    x_mean = (n - 1) / 2
    y_mean = fmean(values)
    numerator = sum((i - x_mean) * (y - y_mean) for i, y in enumerate(values))
    denominator = sum((i - x_mean) ** 2 for i in range(n))
    return numerator / denominator


def analyze_trend(values: List[float]) -> Dict[str, Any]:
    """
    Classify a daily series as increasing, decreasing, stable or volatile.

    Volatility (coefficient of variation) is checked before the slope, so a
    noisy series is 'volatile' whatever its direction. Strength is the slope
    relative to the mean, clamped to 0-1.
    """
    if len(values) < 2:
        return {"direction": "stable", "strength": 0.0}

    mean = fmean(values)
    if mean == 0:
        return {"direction": "stable", "strength": 0.0}

    slope = linear_regression_slope(values)
    volatility = pstdev(values) / abs(mean)
    if volatility > VOLATILITY_THRESHOLD:
        return {"direction": "volatile", "strength": min(volatility, 1.0)}

    relative_slope = slope / abs(mean)
    if relative_slope > SLOPE_THRESHOLD:
        direction = "increasing"
    elif relative_slope < -SLOPE_THRESHOLD:
        direction = "decreasing"
    else:
        direction = "stable"

    return {"direction": direction, "strength": min(abs(relative_slope), 1.0)}


def detect_seasonality(points: List[Tuple[date, float]]) -> Dict[str, Any]:
    """Look for a weekly pattern by comparing day-of-week averages."""
    if len(points) < SEASONALITY_MIN_POINTS:
        return {"detected": False, "pattern": "Insufficient data"}

    by_weekday: Dict[int, List[float]] = {}
    for day, value in points:
        by_weekday.setdefault(day.weekday(), []).append(value)

    averages = [fmean(values) for values in by_weekday.values()]
    low, high = min(averages), max(averages)
    if low == 0:
        variation = float("inf") if high > 0 else 0.0
    else:
        variation = (high - low) / low

    if variation > SEASONALITY_THRESHOLD:
        return {"detected": True, "pattern": "Weekly seasonality detected"}
    return {"detected": False, "pattern": "No clear weekly pattern"}


def forecast_next_period(values: List[float]) -> Dict[str, Any]:
    """Three-point trailing moving average with a stability-based confidence."""
    if len(values) < FORECAST_WINDOW:
        return {"nextPeriod": 0, "confidence": 0.0}

    window = values[-FORECAST_WINDOW:]
    average = fmean(window)
    if average == 0:
        return {"nextPeriod": 0, "confidence": 0.9}

    confidence = min(max(0.3, 1 - pstdev(window) / average), 0.9)
    return {"nextPeriod": round(average), "confidence": confidence}
