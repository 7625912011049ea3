# meta_client.py
from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlencode

from facebook_business.adobjects.adaccount import AdAccount as FbAdAccount
from facebook_business.adobjects.adpreview import AdPreview
from facebook_business.adobjects.adsinsights import AdsInsights
from facebook_business.adobjects.campaign import Campaign as FbCampaign

from ..config import AD_PREVIEW_URL, MAX_CAMPAIGNS_PER_PAGE, Settings
from ..infrastructure.error_handling import NormalizedError
from ..infrastructure.executor import (
    CredentialProvider,
    EnvCredentialProvider,
    HttpMethod,
    RequestSpec,
    ResilientExecutor,
)
from ..infrastructure.pacer import RequestPacer
from ..utils import AccountCalendar, from_minor_units, safe_f, safe_i, to_minor_units

logger = logging.getLogger(__name__)


def _meta_log(level: int, message: str, *args) -> None:
    logger.log(level, f"[META] {message}", *args)


# -------------------------
# Graph vocabulary
# -------------------------
class DatePreset(Enum):
    TODAY = AdsInsights.DatePreset.today
    YESTERDAY = AdsInsights.DatePreset.yesterday
    LAST_7D = AdsInsights.DatePreset.last_7d
    THIS_MONTH = AdsInsights.DatePreset.this_month
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union["DatePreset", str, None]) -> "DatePreset":
        """Unknown presets fall back to TODAY."""
        if isinstance(value, DatePreset):
            return value
        v = (value or "").strip().lower()
        if v == "last_7_days":
            return cls.LAST_7D
        for preset in cls:
            if preset.value == v:
                return preset
        _meta_log(logging.DEBUG, "Unknown date preset %r, using today", value)
        return cls.TODAY


class CampaignStatus(Enum):
    ACTIVE = FbCampaign.Status.active
    PAUSED = FbCampaign.Status.paused
    ARCHIVED = FbCampaign.Status.archived
    DELETED = FbCampaign.Status.deleted


class AdFormat(Enum):
    DESKTOP_FEED_STANDARD = AdPreview.AdFormat.desktop_feed_standard
    MOBILE_FEED_STANDARD = AdPreview.AdFormat.mobile_feed_standard


TOGGLEABLE_STATUSES = (CampaignStatus.ACTIVE, CampaignStatus.PAUSED)

AD_ACCOUNT_FIELDS: Tuple[str, ...] = (
    FbAdAccount.Field.id,
    FbAdAccount.Field.name,
    FbAdAccount.Field.account_id,
)
CAMPAIGN_FIELDS: Tuple[str, ...] = (
    FbCampaign.Field.id,
    FbCampaign.Field.name,
    FbCampaign.Field.status,
    FbCampaign.Field.daily_budget,
    FbCampaign.Field.lifetime_budget,
    FbCampaign.Field.effective_status,
)
INSIGHTS_FIELDS: Tuple[str, ...] = (
    AdsInsights.Field.impressions,
    AdsInsights.Field.clicks,
    AdsInsights.Field.ctr,
    AdsInsights.Field.cpc,
    AdsInsights.Field.spend,
    AdsInsights.Field.actions,
)
FIRST_CREATIVE_FIELDS = "creative{id}"


# -------------------------
# Domain types
# -------------------------
@dataclass(frozen=True)
class DateRange:
    start: Union[date, datetime]
    end: Union[date, datetime]

    def __post_init__(self) -> None:
        s = self.start.date() if isinstance(self.start, datetime) else self.start
        e = self.end.date() if isinstance(self.end, datetime) else self.end
        if s > e:
            raise ValueError(f"Date range start {s} is after end {e}")


@dataclass
class AdAccount:
    id: str
    name: str
    account_id: str

    @staticmethod
    def from_graph(row: Dict[str, Any]) -> "AdAccount":
        return AdAccount(
            id=str(row.get("id") or ""),
            name=str(row.get("name") or ""),
            account_id=str(row.get("account_id") or ""),
        )


@dataclass
class Action:
    action_type: str
    value: str


@dataclass
class CampaignInsights:
    impressions: int = 0
    clicks: int = 0
    ctr: float = 0.0
    cpc: float = 0.0
    spend: float = 0.0
    actions: List[Action] = field(default_factory=list)
    date_start: Optional[str] = None
    date_stop: Optional[str] = None

    @staticmethod
    def from_graph(row: Dict[str, Any]) -> "CampaignInsights":
        return CampaignInsights(
            impressions=safe_i(row.get("impressions")),
            clicks=safe_i(row.get("clicks")),
            ctr=safe_f(row.get("ctr")),
            cpc=safe_f(row.get("cpc")),
            spend=safe_f(row.get("spend")),
            actions=[
                Action(str(a.get("action_type", "")), str(a.get("value", "")))
                for a in (row.get("actions") or [])
                if isinstance(a, dict)
            ],
            date_start=row.get("date_start"),
            date_stop=row.get("date_stop"),
        )


@dataclass
class Campaign:
    id: str
    name: str
    status: str
    daily_budget: Optional[float] = None
    lifetime_budget: Optional[float] = None
    delivery_status: Optional[str] = None
    insights: Optional[CampaignInsights] = None
    creative_id: Optional[str] = None

    @staticmethod
    def from_graph(row: Dict[str, Any]) -> "Campaign":
        # budgets arrive in minor units
        return Campaign(
            id=str(row.get("id") or ""),
            name=str(row.get("name") or ""),
            status=str(row.get("status") or ""),
            daily_budget=from_minor_units(row.get("daily_budget")),
            lifetime_budget=from_minor_units(row.get("lifetime_budget")),
            delivery_status=row.get("effective_status"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _normalize_account_id(account_id: str) -> str:
    """Accepts either '123' or 'act_123', returns 'act_123'."""
    aid = (account_id or "").strip()
    if not aid:
        raise ValueError("An ad account id is required.")
    num = aid[4:] if aid.startswith("act_") else aid
    return f"act_{num}"


def fallback_preview_html(creative_id: str, ad_format: AdFormat) -> str:
    query = urlencode({"creative_id": creative_id, "ad_format": ad_format.value})
    return f'<iframe src="{AD_PREVIEW_URL}?{query}" width="100%" height="600" frameborder="0"></iframe>'


# -------------------------
# MetaClient
# -------------------------
class MetaClient:
    """
    Dashboard-facing Graph API operations.

    Every call goes through one ResilientExecutor, so all of them share its
    pacer and surface failures as NormalizedError. Budgets are exchanged with
    callers in major currency units and converted to the integer minor units
    Graph expects.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        settings: Optional[Settings] = None,
        *,
        calendar: Optional[AccountCalendar] = None,
    ) -> None:
        self.executor = executor
        self.settings = settings or Settings()
        self.calendar = calendar or AccountCalendar(self.settings.account_timezone)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        credentials: Optional[CredentialProvider] = None,
    ) -> "MetaClient":
        settings = settings or Settings.from_env()
        pacer = RequestPacer(settings.request_interval)
        executor = ResilientExecutor(credentials or EnvCredentialProvider(), pacer)
        return cls(executor, settings)

    def close(self) -> None:
        self.executor.close()

    def __enter__(self) -> "MetaClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------- HTTP helpers -------------
    def _graph_url(self, path: str) -> str:
        return f"{self.settings.graph_base}/{(path or '').lstrip('/')}"

    def _spec(self, method: HttpMethod, path: str, params: Dict[str, Any]) -> RequestSpec:
        return RequestSpec(
            url=self._graph_url(path),
            method=method,
            params=params,
            timeout=self.settings.timeout,
            max_attempts=self.settings.max_attempts,
        )

    def _graph_get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.executor.execute(self._spec(HttpMethod.GET, path, dict(params or {})))

    def _graph_post(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.executor.execute(self._spec(HttpMethod.POST, path, dict(params or {})))

    @staticmethod
    def _rows(payload: Any) -> List[Dict[str, Any]]:
        rows = payload.get("data") if isinstance(payload, dict) else None
        return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []

    def date_params(
        self,
        date_preset: Union[DatePreset, str, None] = DatePreset.TODAY,
        date_range: Optional[DateRange] = None,
    ) -> Dict[str, str]:
        preset = DatePreset.parse(date_preset)
        if preset is DatePreset.CUSTOM:
            if date_range is not None:
                return {
                    "time_range": json.dumps({
                        "since": self.calendar.ymd(date_range.start),
                        "until": self.calendar.ymd(date_range.end),
                    }),
                }
            preset = DatePreset.TODAY
        return {"date_preset": preset.value}

    # ------------- reads -------------
    def list_ad_accounts(self) -> List[AdAccount]:
        try:
            data = self._graph_get("me/adaccounts", {"fields": ",".join(AD_ACCOUNT_FIELDS)})
        except NormalizedError as e:
            logger.error("Error fetching ad accounts: %s", e)
            raise
        return [AdAccount.from_graph(r) for r in self._rows(data)]

    def get_campaign_insights(
        self,
        campaign_id: str,
        date_preset: Union[DatePreset, str, None] = DatePreset.TODAY,
        date_range: Optional[DateRange] = None,
    ) -> Optional[CampaignInsights]:
        params: Dict[str, Any] = {"fields": ",".join(INSIGHTS_FIELDS)}
        params.update(self.date_params(date_preset, date_range))
        rows = self._rows(self._graph_get(f"{campaign_id}/insights", params))
        return CampaignInsights.from_graph(rows[0]) if rows else None

    def get_first_creative_id(self, campaign_id: str) -> Optional[str]:
        rows = self._rows(self._graph_get(f"{campaign_id}/ads", {"fields": FIRST_CREATIVE_FIELDS, "limit": 1}))
        if not rows:
            return None
        creative = rows[0].get("creative")
        if isinstance(creative, dict) and creative.get("id"):
            return str(creative["id"])
        return None

    def list_campaigns(
        self,
        ad_account_id: str,
        date_preset: Union[DatePreset, str, None] = DatePreset.TODAY,
        date_range: Optional[DateRange] = None,
        *,
        fields: Optional[Sequence[str]] = None,
        with_insights: bool = True,
    ) -> List[Campaign]:
        """
        Campaigns of one ad account, each enriched with insights for the date
        window and the first creative id. A failed enrichment is logged and
        leaves that campaign without it; a failed listing raises.
        """
        act = _normalize_account_id(ad_account_id)
        try:
            data = self._graph_get(
                f"{act}/campaigns",
                {"fields": ",".join(fields or CAMPAIGN_FIELDS), "limit": MAX_CAMPAIGNS_PER_PAGE},
            )
        except NormalizedError as e:
            logger.error("Error fetching campaigns: %s", e)
            raise

        campaigns = [Campaign.from_graph(r) for r in self._rows(data)]
        if not with_insights or not campaigns:
            return campaigns

        workers = max(1, min(self.settings.enrichment_workers, len(campaigns)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="meta_enrich") as pool:
            list(pool.map(lambda c: self._enrich(c, date_preset, date_range), campaigns))
        return campaigns

    def _enrich(
        self,
        campaign: Campaign,
        date_preset: Union[DatePreset, str, None],
        date_range: Optional[DateRange],
    ) -> Campaign:
        try:
            campaign.insights = self.get_campaign_insights(campaign.id, date_preset, date_range)
        except NormalizedError as e:
            _meta_log(logging.WARNING, "Could not fetch insights for campaign %s: %s", campaign.id, e)
            return campaign
        try:
            campaign.creative_id = self.get_first_creative_id(campaign.id)
        except NormalizedError as e:
            _meta_log(logging.WARNING, "Could not fetch creative for campaign %s: %s", campaign.id, e)
        return campaign

    def get_ad_preview(
        self,
        creative_id: str,
        ad_format: Union[AdFormat, str] = AdFormat.DESKTOP_FEED_STANDARD,
    ) -> str:
        """Rendered preview HTML, or an iframe pointing at the public preview page."""
        fmt = AdFormat(ad_format.upper()) if isinstance(ad_format, str) else ad_format
        try:
            rows = self._rows(self._graph_get(f"{creative_id}/previews", {"ad_format": fmt.value}))
        except NormalizedError as e:
            logger.error("Error fetching ad preview: %s", e)
            return fallback_preview_html(creative_id, fmt)
        if rows and rows[0].get("body"):
            return str(rows[0]["body"])
        return fallback_preview_html(creative_id, fmt)

    # ------------- writes -------------
    def update_campaign_status(self, campaign_id: str, status: Union[CampaignStatus, str]) -> bool:
        try:
            target = CampaignStatus(status.upper() if isinstance(status, str) else status)
        except ValueError:
            target = None
        if target not in TOGGLEABLE_STATUSES:
            raise ValueError(f"Campaign status must be ACTIVE or PAUSED, got {status!r}")
        try:
            self._graph_post(campaign_id, {"status": target.value})
        except NormalizedError as e:
            logger.error("Error updating campaign status: %s", e)
            raise
        _meta_log(logging.INFO, "Campaign %s set to %s", campaign_id, target.value)
        return True

    def update_campaign_budget(self, campaign_id: str, daily_budget: Union[float, int, str]) -> bool:
        minor = to_minor_units(daily_budget)
        if minor < 0:
            raise ValueError(f"Daily budget must not be negative, got {daily_budget!r}")
        try:
            self._graph_post(campaign_id, {"daily_budget": minor})
        except NormalizedError as e:
            logger.error("Error updating campaign budget: %s", e)
            raise
        _meta_log(logging.INFO, "Campaign %s daily budget set to %d minor units", campaign_id, minor)
        return True
