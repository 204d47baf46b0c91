"""
Google Analytics 4 client for Sophia.
Wraps the Analytics Admin API (property and stream provisioning) and the
Analytics Data API (reports) behind a small interface the analytics service
can be given a fake of.
"""

import logging
from typing import Optional, Dict, Any, List

from google.oauth2 import service_account
from googleapiclient.discovery import build

from services.config import (
    GOOGLE_SERVICE_ACCOUNT_EMAIL,
    GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY,
    GOOGLE_CLOUD_PROJECT_ID,
    GA_ACCOUNT_ID,
    GA_SCOPES,
    is_google_analytics_enabled,
)

logger = logging.getLogger(__name__)


def get_ga_credentials() -> Optional[service_account.Credentials]:
    """Build service-account credentials. Returns None if not configured."""
    if not is_google_analytics_enabled():
        return None
    info = {
        "type": "service_account",
        "client_email": GOOGLE_SERVICE_ACCOUNT_EMAIL,
        "private_key": GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY,
        "project_id": GOOGLE_CLOUD_PROJECT_ID,
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    return service_account.Credentials.from_service_account_info(info, scopes=GA_SCOPES)


class GoogleAnalyticsClient:
    """Thin synchronous wrapper over the GA4 Admin and Data REST APIs."""

    def __init__(self, credentials=None, account_id: Optional[str] = GA_ACCOUNT_ID):
        self._credentials = credentials
        self._account_id = account_id
        self._admin = None
        self._data = None

    def _admin_api(self):
        if self._admin is None:
            credentials = self._credentials or get_ga_credentials()
            self._admin = build("analyticsadmin", "v1beta", credentials=credentials, cache_discovery=False)
        return self._admin

    def _data_api(self):
        if self._data is None:
            credentials = self._credentials or get_ga_credentials()
            self._data = build("analyticsdata", "v1beta", credentials=credentials, cache_discovery=False)
        return self._data

    def create_property(
        self,
        display_name: str,
        time_zone: str,
        currency_code: str,
        industry_category: str
    ) -> Dict[str, Any]:
        body = {
            "displayName": display_name,
            "timeZone": time_zone,
            "currencyCode": currency_code,
            "industryCategory": industry_category,
        }
        if self._account_id:
            body["parent"] = f"accounts/{self._account_id}"
        return self._admin_api().properties().create(body=body).execute()

    def create_web_stream(self, property_name: str, display_name: str, default_uri: str) -> Dict[str, Any]:
        body = {
            "type": "WEB_DATA_STREAM",
            "displayName": display_name,
            "webStreamData": {"defaultUri": default_uri},
        }
        return self._admin_api().properties().dataStreams().create(parent=property_name, body=body).execute()

    def run_report(
        self,
        property_id: str,
        start: str,
        end: str,
        metrics: List[str],
        dimensions: List[str]
    ) -> Dict[str, Any]:
        body = {
            "dateRanges": [{"startDate": start, "endDate": end}],
            "metrics": [{"name": name} for name in metrics],
            "dimensions": [{"name": name} for name in dimensions],
            "orderBys": [{"dimension": {"dimensionName": dimensions[0]}}] if dimensions else [],
        }
        return self._data_api().properties().runReport(property=f"properties/{property_id}", body=body).execute()

    def run_realtime_report(self, property_id: str, metrics: List[str]) -> Dict[str, Any]:
        body = {"metrics": [{"name": name} for name in metrics]}
        return self._data_api().properties().runRealtimeReport(
            property=f"properties/{property_id}", body=body
        ).execute()
