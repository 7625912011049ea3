"""
ADSDESK INTEGRATIONS
External service integrations

This package contains:
- meta_client: Meta Graph API client for the campaign dashboard
"""

from .meta_client import (
    AdAccount, AdFormat, Action, Campaign, CampaignInsights, CampaignStatus,
    DatePreset, DateRange, MetaClient, fallback_preview_html,
)

__all__ = [
    'MetaClient',
    'AdAccount', 'AdFormat', 'Action', 'Campaign', 'CampaignInsights', 'CampaignStatus',
    'DatePreset', 'DateRange', 'fallback_preview_html',
]
