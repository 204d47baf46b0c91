"""
Shared fixtures: an in-memory database, fake Google Analytics and browser
providers, and a TestClient wired to them through dependency overrides.
"""

import os
import sys

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from services.ai_agent import SophiaAIAgent
from services.analytics_service import AnalyticsService
from services.auth import create_access_token
from services.business_service import BusinessService
from services.database import Base, User, get_db
from services.monitoring import WebsiteMonitoringService

STRONG_PASSWORD = "Str0ng!Pass"


class FakeGAClient:
    """Stands in for GoogleAnalyticsClient; records calls and returns canned payloads."""

    def __init__(self):
        self.report_rows = []
        self.realtime_rows = []
        self.fail = False
        self.properties = []
        self.streams = []

    def create_property(self, display_name, time_zone, currency_code, industry_category):
        if self.fail:
            raise RuntimeError("GA unavailable")
        self.properties.append(display_name)
        return {"name": "properties/123456", "displayName": display_name}

    def create_web_stream(self, property_name, display_name, default_uri):
        self.streams.append(default_uri)
        return {
            "name": f"{property_name}/dataStreams/789",
            "webStreamData": {"measurementId": "G-TEST123", "defaultUri": default_uri},
        }

    def run_report(self, property_id, start, end, metrics, dimensions):
        if self.fail:
            raise RuntimeError("GA unavailable")
        return {"rows": self.report_rows}

    def run_realtime_report(self, property_id, metrics):
        if self.fail:
            raise RuntimeError("GA unavailable")
        return {"rows": self.realtime_rows}


class FakeBrowser:
    """Async stand-in for BrowserClient. evaluations maps a script to its result."""

    def __init__(self, status=200, evaluations=None, counts=None, fail_navigation=False):
        self.status = status
        self.evaluations = evaluations or {}
        self.counts = counts or {}
        self.fail_navigation = fail_navigation
        self.visited = []
        self.clicked = []
        self.screenshots = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def navigate(self, url):
        if self.fail_navigation:
            raise RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        self.visited.append(url)
        return self.status

    async def evaluate(self, expression):
        return self.evaluations.get(expression)

    async def count(self, selector):
        return self.counts.get(selector, 0)

    async def click(self, selector):
        self.clicked.append(selector)

    async def screenshot(self, name, output_dir="", width=None, height=None):
        self.screenshots.append((name, output_dir, width, height))
        return f"{name}.png"


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def business_service():
    return BusinessService()


@pytest.fixture
def fake_ga():
    return FakeGAClient()


@pytest.fixture
def analytics(business_service, fake_ga):
    return AnalyticsService(business_service, ga_client=fake_ga)


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def client(db, analytics, business_service, fake_browser, tmp_path):
    def override_get_db():
        yield db

    monitoring = WebsiteMonitoringService(browser_factory=lambda: fake_browser, screenshot_dir=str(tmp_path))

    main.app.dependency_overrides[get_db] = override_get_db
    main.app.dependency_overrides[main.get_business_service] = lambda: business_service
    main.app.dependency_overrides[main.get_analytics_service] = lambda: analytics
    main.app.dependency_overrides[main.get_monitoring_service] = lambda: monitoring
    main.app.dependency_overrides[main.get_ai_agent] = lambda: SophiaAIAgent(api_key=None)
    yield TestClient(main.app, raise_server_exceptions=False)
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(email="owner@example.com", password=STRONG_PASSWORD, name="Owner"):
        user = User(email=email, name=name)
        user.set_password(password)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user, {"Authorization": f"Bearer {create_access_token(user)}"}
    return _make


@pytest.fixture
def make_business(db, business_service):
    def _make(owner, name="Acme Analytics", **overrides):
        data = {
            "name": name,
            "description": "Dashboards for small online shops",
            "industry": "Software",
            "monthly_price": 29.0,
            "currency": "USD",
            "website_url": "https://acme.example.com",
        }
        data.update(overrides)
        return business_service.create(db, data, owner.id)
    return _make


@pytest.fixture
def tracked_business(db, make_user, make_business, business_service):
    """An owner, their auth headers and a business with analytics configured."""
    owner, headers = make_user()
    business = make_business(owner)
    business_service.update_analytics_info(db, business.id, "123456", "G-TEST123", "789")
    return owner, headers, business
