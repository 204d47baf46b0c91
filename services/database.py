"""
Database configuration and models for Sophia.
Uses SQLAlchemy for persistence; SQLite by default, any SQLAlchemy URL via DATABASE_URL.
"""

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Date, DateTime, Text, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship, Session
import bcrypt

from services.config import DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def generate_id() -> str:
    return str(uuid.uuid4())


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


class BusinessStatus(str, Enum):
    PLANNING = "PLANNING"
    DEVELOPING = "DEVELOPING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CLOSED = "CLOSED"


class User(Base):
    """User accounts for authentication and ownership."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=True)
    avatar = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login_at = Column(DateTime, nullable=True)

    businesses = relationship("Business", back_populates="owner", cascade="all, delete-orphan")

    def set_password(self, password: str):
        """Hash and store password. Truncates to 72 bytes for bcrypt compatibility."""
        password_bytes = password.encode('utf-8')[:72]
        salt = bcrypt.gensalt()
        self.password_hash = bcrypt.hashpw(password_bytes, salt).decode('utf-8')

    def verify_password(self, password: str) -> bool:
        """Verify password against stored hash."""
        password_bytes = password.encode('utf-8')[:72]
        stored_hash = self.password_hash.encode('utf-8')
        return bcrypt.checkpw(password_bytes, stored_hash)

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; never includes the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "avatar": self.avatar,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Business(Base):
    """A tenant-owned SaaS product tracked by the platform."""
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=False)
    industry = Column(String(50), nullable=False)
    monthly_price = Column(Float, nullable=False)
    currency = Column(String(3), default="USD")
    status = Column(String(20), default=BusinessStatus.PLANNING.value, index=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    website_url = Column(String(500), nullable=True)
    repository_url = Column(String(500), nullable=True)
    landing_page_url = Column(String(500), nullable=True)

    analytics_property_id = Column(String(100), nullable=True)
    analytics_measurement_id = Column(String(100), nullable=True)
    analytics_stream_id = Column(String(100), nullable=True)

    stripe_product_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    subscription_status = Column(String(30), nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="businesses")
    metrics = relationship("BusinessMetric", back_populates="business", cascade="all, delete-orphan")
    conversion_events = relationship("ConversionEvent", back_populates="business", cascade="all, delete-orphan")
    campaigns = relationship("MarketingCampaign", back_populates="business", cascade="all, delete-orphan")
    deployments = relationship("Deployment", back_populates="business", cascade="all, delete-orphan")

    @property
    def has_analytics(self) -> bool:
        """Tracking counts as configured only when every analytics ID is present."""
        return bool(
            self.analytics_property_id
            and self.analytics_measurement_id
            and self.analytics_stream_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "industry": self.industry,
            "monthlyPrice": self.monthly_price,
            "currency": self.currency,
            "status": self.status,
            "ownerId": self.owner_id,
            "websiteUrl": self.website_url,
            "repositoryUrl": self.repository_url,
            "landingPageUrl": self.landing_page_url,
            "analyticsPropertyId": self.analytics_property_id,
            "analyticsMeasurementId": self.analytics_measurement_id,
            "analyticsStreamId": self.analytics_stream_id,
            "stripeProductId": self.stripe_product_id,
            "stripePriceId": self.stripe_price_id,
            "stripeCustomerId": self.stripe_customer_id,
            "stripeSubscriptionId": self.stripe_subscription_id,
            "subscriptionStatus": self.subscription_status,
            "currentPeriodStart": _iso(self.current_period_start),
            "currentPeriodEnd": _iso(self.current_period_end),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class BusinessMetric(Base):
    """One row of daily traffic and revenue figures per business."""
    __tablename__ = "business_metrics"
    __table_args__ = (UniqueConstraint("business_id", "date", name="uq_business_metric_day"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    visitors = Column(Integer, default=0)
    conversions = Column(Integer, default=0)
    revenue = Column(Float, default=0.0)
    bounce_rate = Column(Float, default=0.0)
    session_duration = Column(Float, default=0.0)
    page_views = Column(Integer, default=0)

    ad_spend = Column(Float, default=0.0)
    ad_clicks = Column(Integer, default=0)
    ad_impressions = Column(Integer, default=0)
    new_subscriptions = Column(Integer, default=0)
    cancelled_subscriptions = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    business = relationship("Business", back_populates="metrics")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "date": _iso(self.date),
            "visitors": self.visitors,
            "conversions": self.conversions,
            "revenue": self.revenue,
            "bounceRate": self.bounce_rate,
            "sessionDuration": self.session_duration,
            "pageViews": self.page_views,
            "adSpend": self.ad_spend,
            "adClicks": self.ad_clicks,
            "adImpressions": self.ad_impressions,
            "newSubscriptions": self.new_subscriptions,
            "cancelledSubscriptions": self.cancelled_subscriptions,
        }


class ConversionEvent(Base):
    """Append-only log of conversions attributed to a business."""
    __tablename__ = "conversion_events"

    id = Column(String(36), primary_key=True, default=generate_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    event_name = Column(String(100), nullable=False)
    value = Column(Float, nullable=True)
    metadata_json = Column("metadata", Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    business = relationship("Business", back_populates="conversion_events")

    def get_metadata(self) -> Optional[Dict[str, Any]]:
        if not self.metadata_json:
            return None
        try:
            return json.loads(self.metadata_json)
        except (json.JSONDecodeError, TypeError):
            return None

    def set_metadata(self, metadata: Optional[Dict[str, Any]]):
        self.metadata_json = json.dumps(metadata) if metadata is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "eventName": self.event_name,
            "value": self.value,
            "metadata": self.get_metadata(),
            "createdAt": _iso(self.created_at),
        }


class MarketingCampaign(Base):
    __tablename__ = "marketing_campaigns"

    id = Column(String(36), primary_key=True, default=generate_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    platform = Column(String(30), nullable=False)
    status = Column(String(20), default="DRAFT")
    budget = Column(Float, default=0.0)
    spent = Column(Float, default=0.0)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    conversions = Column(Integer, default=0)
    start_date = Column(DateTime, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    business = relationship("Business", back_populates="campaigns")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "name": self.name,
            "platform": self.platform,
            "status": self.status,
            "budget": self.budget,
            "spent": self.spent,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
        }


class Deployment(Base):
    __tablename__ = "deployments"

    id = Column(String(36), primary_key=True, default=generate_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    version = Column(String(50), nullable=False)
    environment = Column(String(30), default="production")
    status = Column(String(20), default="PENDING")
    url = Column(String(500), nullable=True)
    commit_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    business = relationship("Business", back_populates="deployments")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.business_id,
            "version": self.version,
            "environment": self.environment,
            "status": self.status,
            "url": self.url,
            "commitHash": self.commit_hash,
            "createdAt": _iso(self.created_at),
        }


def init_db():
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get database session - use as dependency or context manager."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db_session() -> Session:
    """Get a new database session directly."""
    return SessionLocal()
