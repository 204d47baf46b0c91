import asyncio

import pytest

from conftest import FakeBrowser
from services import monitoring as mon
from services.errors import BusinessRuleError


def run(coro):
    return asyncio.run(coro)


def service_for(browser, tmp_path):
    return mon.WebsiteMonitoringService(browser_factory=lambda: browser, screenshot_dir=str(tmp_path))


@pytest.fixture
def business(make_user, make_business):
    owner, _ = make_user()
    return make_business(owner)


def test_healthy_site(business, tmp_path):
    browser = FakeBrowser(evaluations={
        mon.PAGE_STATE_SCRIPT: {"title": "Acme", "hasJsErrors": False, "consoleErrors": []},
        mon.BROKEN_ELEMENTS_SCRIPT: 0,
    })
    status = run(service_for(browser, tmp_path).check_website_health(business))
    assert status["isOnline"] is True
    assert status["httpStatus"] == 200
    assert status["title"] == "Acme"
    assert status["hasErrors"] is False
    assert browser.visited == ["https://acme.example.com"]


def test_broken_elements_are_reported(business, tmp_path):
    browser = FakeBrowser(evaluations={
        mon.PAGE_STATE_SCRIPT: {"title": "", "hasJsErrors": False},
        mon.BROKEN_ELEMENTS_SCRIPT: 3,
    })
    status = run(service_for(browser, tmp_path).check_website_health(business))
    assert status["hasErrors"] is True
    assert status["title"] == "No Title"
    assert status["errorMessages"] == ["Found 3 broken images or links"]


def test_navigation_failure_is_folded_into_result(business, tmp_path):
    browser = FakeBrowser(fail_navigation=True)
    status = run(service_for(browser, tmp_path).check_website_health(business))
    assert status["isOnline"] is False
    assert status["httpStatus"] == 500
    assert status["errorMessages"][0].startswith("Navigation failed")


def test_server_error_status_is_offline(business, tmp_path):
    browser = FakeBrowser(status=503)
    status = run(service_for(browser, tmp_path).check_website_health(business))
    assert status["isOnline"] is False
    assert status["httpStatus"] == 503


def test_missing_website_raises(db, business, tmp_path):
    business.website_url = None
    db.commit()
    with pytest.raises(BusinessRuleError, match="has no website URL configured"):
        run(service_for(FakeBrowser(), tmp_path).check_website_health(business))


def test_performance_audit_scores(business, tmp_path):
    browser = FakeBrowser(evaluations={
        mon.PERFORMANCE_SCRIPT: {"loadTime": 2500, "firstContentfulPaint": 800},
        mon.ACCESSIBILITY_SCRIPT: {"hasAltTexts": True, "hasProperHeadings": True, "hasFormLabels": False},
    })
    metrics = run(service_for(browser, tmp_path).run_performance_audit(business))
    assert metrics["performance"] == 75
    assert metrics["accessibility"] == 67
    assert metrics["bestPractices"] == 85
    assert metrics["seo"] == 90
    assert metrics["firstContentfulPaint"] == 800


def test_performance_floor_is_zero(business, tmp_path):
    browser = FakeBrowser(evaluations={mon.PERFORMANCE_SCRIPT: {"loadTime": 20000}})
    metrics = run(service_for(browser, tmp_path).run_performance_audit(business))
    assert metrics["performance"] == 0
    assert metrics["accessibility"] == 0


def test_payment_flow_success(business, tmp_path):
    browser = FakeBrowser(
        evaluations={mon.STRIPE_FORM_SCRIPT: True},
        counts={".pricing-btn": 1},
    )
    result = run(service_for(browser, tmp_path).test_payment_flow(business))
    assert result["success"] is True
    assert [step["success"] for step in result["steps"]] == [True, True, True]
    assert browser.clicked == [".pricing-btn"]
    assert len(browser.screenshots) == 3


def test_payment_flow_partial(business, tmp_path):
    browser = FakeBrowser(evaluations={mon.STRIPE_FORM_SCRIPT: False})
    result = run(service_for(browser, tmp_path).test_payment_flow(business))
    assert result["success"] is False
    assert [step.get("error") for step in result["steps"]] == [
        None, "No subscribe button found", "No Stripe payment form found",
    ]


def test_payment_flow_navigation_failure(business, tmp_path):
    result = run(service_for(FakeBrowser(fail_navigation=True), tmp_path).test_payment_flow(business))
    assert result["success"] is False
    assert result["steps"][-1]["step"] == "Payment flow test failed"


def test_capture_screenshot(business, tmp_path):
    browser = FakeBrowser()
    file_name = run(service_for(browser, tmp_path).capture_screenshot(business, "pricing"))
    assert file_name.startswith(f"{business.id}-pricing-")
    assert file_name.endswith(".png")
    name, output_dir, width, height = browser.screenshots[0]
    assert output_dir.endswith("visual-regression")
    assert (width, height) == (1280, 720)


def test_monitoring_routes(client, fake_browser, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    fake_browser.status = 200

    health = client.get(f"/api/monitoring/{business.id}/health", headers=headers)
    assert health.status_code == 200
    assert health.json()["data"]["isOnline"] is True

    shot = client.post(f"/api/monitoring/{business.id}/screenshot?page=home", headers=headers)
    assert shot.status_code == 201
    assert shot.json()["data"]["fileName"].endswith(".png")

    assert client.get(f"/api/monitoring/{business.id}/performance", headers=headers).status_code == 200
    assert client.post(f"/api/monitoring/{business.id}/payment-flow", headers=headers).json()["data"]["steps"]


def test_monitoring_route_without_website(client, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner, website_url=None)
    response = client.get(f"/api/monitoring/{business.id}/health", headers=headers)
    assert response.status_code == 400
