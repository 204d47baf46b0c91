from datetime import date, timedelta

from services.database import BusinessMetric


def test_summary_requires_tracking(client, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    response = client.get(f"/api/analytics/{business.id}/summary", headers=headers)
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Analytics tracking is not configured for this business",
    }


def test_summary(client, db, tracked_business):
    _, headers, business = tracked_business
    db.add(BusinessMetric(business_id=business.id, date=date.today(), visitors=12, bounce_rate=40.0))
    db.commit()
    body = client.get(f"/api/analytics/{business.id}/summary?days=7", headers=headers).json()
    assert body["data"]["period"] == "7 days"
    assert body["data"]["summary"]["activeUsers"] == 12


def test_foreign_business_looks_missing(client, make_user, tracked_business):
    _, _, business = tracked_business
    _, stranger_headers = make_user(email="stranger@example.com")
    response = client.get(f"/api/analytics/{business.id}/summary", headers=stranger_headers)
    assert response.status_code == 404
    assert response.json()["message"] == "Business not found or access denied"


def test_setup_tracking(client, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    response = client.post(
        "/api/analytics/setup",
        json={"businessId": business.id, "websiteUrl": "https://acme.example.com"},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["data"]["trackingId"] == "G-TEST123"

    again = client.post(
        "/api/analytics/setup",
        json={"businessId": business.id, "websiteUrl": "https://acme.example.com"},
        headers=headers,
    )
    assert again.status_code == 400


def test_setup_tracking_provider_failure_is_502(client, fake_ga, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    fake_ga.fail = True
    response = client.post(
        "/api/analytics/setup",
        json={"businessId": business.id, "websiteUrl": "https://acme.example.com"},
        headers=headers,
    )
    assert response.status_code == 502
    assert response.json()["success"] is False


def test_metrics_requires_iso_dates(client, tracked_business):
    _, headers, business = tracked_business
    response = client.get(f"/api/analytics/{business.id}/metrics?start=01-01-2024&end=2024-01-31", headers=headers)
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "start"


def test_metrics_from_provider(client, fake_ga, tracked_business):
    _, headers, business = tracked_business
    fake_ga.report_rows = [{"dimensionValues": [{"value": "20240101"}], "metricValues": [{"value": "9"}]}]
    body = client.get(
        f"/api/analytics/{business.id}/metrics?start=2024-01-01&end=2024-01-31", headers=headers
    ).json()
    assert body["data"]["metrics"][0]["activeUsers"] == 9
    assert body["data"]["dateRange"] == {"start": "2024-01-01", "end": "2024-01-31"}


def test_record_and_sync_metrics(client, fake_ga, tracked_business):
    _, headers, business = tracked_business
    recorded = client.post(
        f"/api/analytics/{business.id}/metrics",
        json={"date": "2024-03-01", "visitors": 30, "bounceRate": 42.5},
        headers=headers,
    )
    assert recorded.status_code == 201
    assert recorded.json()["data"]["bounceRate"] == 42.5

    fake_ga.report_rows = [{"dimensionValues": [{"value": "20240302"}], "metricValues": [{"value": "4"}]}]
    synced = client.post(
        f"/api/analytics/{business.id}/sync",
        json={"start": "2024-03-02", "end": "2024-03-02"},
        headers=headers,
    )
    assert synced.json()["data"]["synced"] == 1


def test_realtime_and_dashboard(client, fake_ga, tracked_business):
    _, headers, business = tracked_business
    fake_ga.realtime_rows = [{"metricValues": [{"value": "3"}]}]
    realtime = client.get(f"/api/analytics/{business.id}/realtime", headers=headers).json()
    assert realtime["data"]["realTime"] == {"activeUsers": 3}

    dashboard = client.get(f"/api/analytics/{business.id}/dashboard", headers=headers).json()
    assert dashboard["data"]["dashboardUrl"].endswith("/properties/123456")


def test_track_conversion_and_list(client, tracked_business):
    _, headers, business = tracked_business
    response = client.post(
        "/api/analytics/track-conversion",
        json={"businessId": business.id, "eventName": "purchase", "value": 29, "metadata": {"plan": "pro"}},
        headers=headers,
    )
    assert response.status_code == 201

    conversions = client.get(f"/api/analytics/{business.id}/conversions", headers=headers).json()
    [event] = conversions["data"]["conversions"]
    assert event["eventName"] == "purchase"
    assert event["metadata"] == {"plan": "pro"}


def test_compare_periods_requires_both_periods(client, tracked_business):
    _, headers, business = tracked_business
    response = client.post(
        f"/api/analytics/{business.id}/compare-periods",
        json={"currentPeriod": {"start": "2024-02-01", "end": "2024-02-29"}},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Both currentPeriod and previousPeriod with start/end dates are required"


def test_compare_periods(client, db, tracked_business):
    _, headers, business = tracked_business
    db.add(BusinessMetric(business_id=business.id, date=date(2024, 2, 10), visitors=200))
    db.add(BusinessMetric(business_id=business.id, date=date(2024, 1, 10), visitors=100))
    db.commit()
    response = client.post(
        f"/api/analytics/{business.id}/compare-periods",
        json={
            "currentPeriod": {"start": "2024-02-01", "end": "2024-02-29"},
            "previousPeriod": {"start": "2024-01-01", "end": "2024-01-31"},
        },
        headers=headers,
    )
    comparison = response.json()["data"]["comparison"]
    assert comparison["trends"]["activeUsersChange"] == 100.0


def test_insights(client, tracked_business):
    _, headers, business = tracked_business
    insights = client.get(f"/api/analytics/{business.id}/insights?days=14", headers=headers).json()["data"]["insights"]
    assert set(insights) == {"performanceScore", "keyMetrics", "recommendations", "predictions"}
    assert len(insights["keyMetrics"]) == 4


def test_trend_endpoint(client, db, tracked_business):
    _, headers, business = tracked_business
    for offset in range(3):
        db.add(BusinessMetric(business_id=business.id, date=date.today() - timedelta(days=offset), revenue=50.0))
    db.commit()
    body = client.get(f"/api/analytics/{business.id}/trend/revenue?period=week", headers=headers).json()
    assert body["data"]["analysis"]["trend"] == "stable"
    assert body["data"]["analysis"]["forecast"]["nextPeriod"] == 50


def test_trend_endpoint_validates_metric_first(client, make_user):
    _, headers = make_user()
    response = client.get("/api/analytics/unknown/trend/sessions", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"].startswith("Invalid metric")
