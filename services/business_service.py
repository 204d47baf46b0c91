"""
Business service for Sophia.
Ownership-scoped CRUD, search and statistics over Business records.
"""

import logging
import math
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from services.database import (
    Business, BusinessStatus, BusinessMetric, ConversionEvent, MarketingCampaign, Deployment
)
from services.errors import ConflictError, NotFoundError, UnauthorizedError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name", "description", "industry", "monthly_price", "currency",
    "website_url", "repository_url", "landing_page_url",
    "stripe_product_id", "stripe_price_id",
)


class BusinessService:
    """Business operations. Every method takes the request's database session."""

    def create(self, db: Session, data: Dict[str, Any], owner_id: str) -> Business:
        name = data["name"].strip()
        existing = db.query(Business).filter(
            Business.owner_id == owner_id,
            func.lower(Business.name) == name.lower()
        ).first()
        if existing:
            raise ConflictError("Business with this name already exists")

        business = Business(
            name=name,
            description=data["description"],
            industry=data["industry"],
            monthly_price=data["monthly_price"],
            currency=(data.get("currency") or "USD").upper(),
            website_url=data.get("website_url"),
            repository_url=data.get("repository_url"),
            landing_page_url=data.get("landing_page_url"),
            status=BusinessStatus.PLANNING.value,
            owner_id=owner_id,
        )
        db.add(business)
        db.commit()
        db.refresh(business)

        logger.info("Created business %s for owner %s", business.id, owner_id)
        return business

    def get_by_id(self, db: Session, business_id: str, owner_id: Optional[str] = None) -> Optional[Business]:
        """
        Fetch a business. Returns None when it does not exist.
        With owner_id set, a business owned by someone else raises UnauthorizedError.
        """
        business = db.query(Business).filter(Business.id == business_id).first()
        if not business:
            return None
        if owner_id is not None and business.owner_id != owner_id:
            raise UnauthorizedError("Unauthorized access to business")
        return business

    def _get_owned(self, db: Session, business_id: str, owner_id: str) -> Business:
        business = self.get_by_id(db, business_id)
        if not business:
            raise NotFoundError("Business not found")
        if business.owner_id != owner_id:
            raise UnauthorizedError("Unauthorized access to business")
        return business

    def get_businesses_by_owner(
        self,
        db: Session,
        owner_id: str,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        page = max(page, 1)
        limit = max(limit, 1)
        query = db.query(Business).filter(Business.owner_id == owner_id)
        total = query.count()
        businesses = (
            query.order_by(Business.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "businesses": businesses,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
        }

    def update(self, db: Session, business_id: str, data: Dict[str, Any], owner_id: str) -> Business:
        business = self._get_owned(db, business_id, owner_id)

        new_name = data.get("name")
        if new_name and new_name.strip().lower() != business.name.lower():
            clash = db.query(Business).filter(
                Business.owner_id == owner_id,
                func.lower(Business.name) == new_name.strip().lower(),
                Business.id != business.id
            ).first()
            if clash:
                raise ConflictError("Business with this name already exists")

        for field in UPDATABLE_FIELDS:
            if data.get(field) is not None:
                setattr(business, field, data[field])
        if data.get("currency"):
            business.currency = data["currency"].upper()

        db.commit()
        db.refresh(business)
        return business

    def update_status(self, db: Session, business_id: str, status: BusinessStatus, owner_id: str) -> Business:
        business = self._get_owned(db, business_id, owner_id)
        business.status = BusinessStatus(status).value
        db.commit()
        db.refresh(business)
        logger.info("Business %s moved to %s", business_id, business.status)
        return business

    def delete(self, db: Session, business_id: str, owner_id: str) -> None:
        business = self._get_owned(db, business_id, owner_id)
        db.delete(business)
        db.commit()
        logger.info("Deleted business %s", business_id)

    def get_by_status(self, db: Session, status: BusinessStatus, owner_id: Optional[str] = None) -> List[Business]:
        query = db.query(Business).filter(Business.status == BusinessStatus(status).value)
        if owner_id is not None:
            query = query.filter(Business.owner_id == owner_id)
        return query.order_by(Business.created_at.desc()).all()

    def get_active_businesses(self, db: Session) -> List[Business]:
        """All ACTIVE businesses across every owner. For operator jobs only."""
        return self.get_by_status(db, BusinessStatus.ACTIVE)

    def search(self, db: Session, query: str, owner_id: Optional[str] = None) -> List[Business]:
        term = query.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        q = db.query(Business).filter(
            or_(
                Business.name.ilike(pattern, escape="\\"),
                Business.description.ilike(pattern, escape="\\"),
                Business.industry.ilike(pattern, escape="\\"),
            )
        )
        if owner_id is not None:
            q = q.filter(Business.owner_id == owner_id)
        return q.order_by(Business.updated_at.desc()).all()

    def get_statistics(self, db: Session, owner_id: Optional[str] = None) -> Dict[str, int]:
        query = db.query(Business.status, func.count(Business.id))
        if owner_id is not None:
            query = query.filter(Business.owner_id == owner_id)
        counts = dict(query.group_by(Business.status).all())

        stats = {"total": sum(counts.values())}
        for status in BusinessStatus:
            stats[status.value.lower()] = counts.get(status.value, 0)
        return stats

    def get_with_details(self, db: Session, business_id: str, owner_id: str) -> Dict[str, Any]:
        business = self._get_owned(db, business_id, owner_id)

        metrics = (
            db.query(BusinessMetric)
            .filter(BusinessMetric.business_id == business.id)
            .order_by(BusinessMetric.date.desc())
            .limit(30)
            .all()
        )
        campaigns = (
            db.query(MarketingCampaign)
            .filter(MarketingCampaign.business_id == business.id)
            .order_by(MarketingCampaign.created_at.desc())
            .all()
        )
        deployments = (
            db.query(Deployment)
            .filter(Deployment.business_id == business.id)
            .order_by(Deployment.created_at.desc())
            .limit(10)
            .all()
        )

        details = business.to_dict()
        details["owner"] = {
            "id": business.owner.id,
            "email": business.owner.email,
            "name": business.owner.name,
        }
        details["metrics"] = [m.to_dict() for m in metrics]
        details["conversionEvents"] = [e.to_dict() for e in self.get_conversion_events(db, business.id, limit=10)]
        details["campaigns"] = [c.to_dict() for c in campaigns]
        details["deployments"] = [d.to_dict() for d in deployments]
        return details

    def update_stripe_data(self, db: Session, business_id: str, product_id: str, price_id: str) -> Business:
        business = self.get_by_id(db, business_id)
        if not business:
            raise NotFoundError("Business not found")
        business.stripe_product_id = product_id
        business.stripe_price_id = price_id
        db.commit()
        db.refresh(business)
        return business

    def update_subscription_status(
        self,
        db: Session,
        business_id: str,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        status: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None
    ) -> Business:
        """Record Stripe subscription state. Arguments left as None keep their stored value."""
        business = self.get_by_id(db, business_id)
        if not business:
            raise NotFoundError("Business not found")
        if subscription_id is not None:
            business.stripe_subscription_id = subscription_id
        if customer_id is not None:
            business.stripe_customer_id = customer_id
        if status is not None:
            business.subscription_status = status
        if current_period_start is not None:
            business.current_period_start = current_period_start
        if current_period_end is not None:
            business.current_period_end = current_period_end
        db.commit()
        db.refresh(business)
        logger.info("Business %s subscription %s is %s", business_id, business.stripe_subscription_id, business.subscription_status)
        return business

    def update_analytics_info(
        self,
        db: Session,
        business_id: str,
        property_id: str,
        measurement_id: str,
        stream_id: str
    ) -> Business:
        business = self.get_by_id(db, business_id)
        if not business:
            raise NotFoundError("Business not found")
        business.analytics_property_id = property_id
        business.analytics_measurement_id = measurement_id
        business.analytics_stream_id = stream_id
        db.commit()
        db.refresh(business)
        return business

    def log_conversion(
        self,
        db: Session,
        business_id: str,
        event_name: str,
        value: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ConversionEvent:
        event = ConversionEvent(business_id=business_id, event_name=event_name, value=value)
        event.set_metadata(metadata)
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    def get_conversion_events(self, db: Session, business_id: str, limit: int = 100) -> List[ConversionEvent]:
        return (
            db.query(ConversionEvent)
            .filter(ConversionEvent.business_id == business_id)
            .order_by(ConversionEvent.created_at.desc())
            .limit(limit)
            .all()
        )

    def mark_business_as_failed(self, db: Session, business_id: str, reason: str = "") -> Business:
        business = self.get_by_id(db, business_id)
        if not business:
            raise NotFoundError("Business not found")
        business.status = BusinessStatus.CLOSED.value
        db.commit()
        db.refresh(business)
        logger.warning("Business %s marked as failed: %s", business_id, reason or "no reason given")
        return business
