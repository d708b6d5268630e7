"""
Burst-protection dashboard queries.

Each function builds one SQL statement, runs it through the pool with retry
and validates the rows into typed records.
"""
import logging
from typing import List, Optional

from ..common.constants import BURST_PROTECTION_ATTRIBUTE
from ..common.database import ConnectionPool
from .query_builder import (
    build_date_range_condition,
    build_filter_condition,
    build_where_clause,
    escape_value,
)
from .schemas import Advertiser, BlockingWindow, Campaign, CampaignFilters, WindowFilters, validate_rows

logger = logging.getLogger(__name__)


async def get_advertisers(pool: ConnectionPool) -> List[Advertiser]:
    """Advertisers with burst protection enabled, ordered by name."""
    sql = f"""
        SELECT DISTINCT
          a.advertiser_id AS id,
          p.description,
          a.feature_date
        FROM (
          SELECT
            coalesce(n.publisher_id, pc.publisher_id) AS advertiser_id,
            date(pc.update_time) AS feature_date
          FROM trc.publisher_config pc
          LEFT JOIN trc.networks n ON pc.publisher_id = n.network_owner
          WHERE pc.attribute = {escape_value(BURST_PROTECTION_ATTRIBUTE)}
            AND pc.publisher_id IS NOT NULL
        ) a
        JOIN trc.publishers p ON p.id = a.advertiser_id
        ORDER BY p.description
    """
    rows = await pool.query_with_retry(sql)
    return validate_rows(rows, Advertiser)


async def get_campaigns(pool: ConnectionPool, filters: CampaignFilters) -> List[Campaign]:
    """
    Campaigns of one advertiser.

    With a date range, only campaigns that reported activity inside it are returned.
    """
    advertiser_condition = build_filter_condition("c.syndicator_id", filters.advertiser_id)
    activity_condition = ""

    if filters.start_date and filters.end_date:
        date_range = build_date_range_condition(
            "a.data_timestamp_by_request_time",
            filters.start_date.isoformat(),
            filters.end_date.isoformat(),
        )
        activity_condition = f"""
            AND EXISTS (
              SELECT 1
              FROM reports.advertiser_dimensions_by_request_time_report_daily a
              WHERE a.campaign_id = c.id
                AND {build_filter_condition("a.account_id", filters.advertiser_id)}
                AND {date_range}
              LIMIT 1
            )
        """

    sql = f"""
        SELECT DISTINCT
          c.id,
          c.name,
          c.syndicator_id AS advertiser_id,
          c.status
        FROM trc.sp_campaigns c
        WHERE {advertiser_condition}
        {activity_condition}
        ORDER BY c.name
    """
    rows = await pool.query_with_retry(sql)
    logger.info("Campaigns query for advertiser %s returned %d rows", filters.advertiser_id, len(rows))
    return validate_rows(rows, Campaign)


async def get_blocking_windows(pool: ConnectionPool, filters: Optional[WindowFilters] = None) -> List[BlockingWindow]:
    """
    Blocking windows, optionally narrowed by advertiser, campaign and date range.

    With a date range, a window is kept only when both its start and its end
    fall inside the range.
    """
    filters = filters or WindowFilters()
    start = filters.start_date.isoformat() if filters.start_date else None
    end = filters.end_date.isoformat() if filters.end_date else None
    where = build_where_clause([
        build_filter_condition("syndicator_id", filters.advertiser_id),
        build_filter_condition("campaign_id", filters.campaign_id),
        build_date_range_condition("start_time", start, end),
        build_date_range_condition("end_time", start, end),
    ])
    sql = f"""
        SELECT
          syndicator_id,
          campaign_id,
          start_time,
          end_time,
          avg_expected_hourly_spend,
          avg_current_period_spend
        FROM reports_internal.spending_burst_protection_blocking_windows
        {where}
        ORDER BY campaign_id, start_time
    """
    logger.info(
        "Blocking windows query (advertiser: %s, campaign: %s, range: %s)",
        filters.advertiser_id, filters.campaign_id,
        f"{start} to {end}" if start and end else "all dates",
    )
    rows = await pool.query_with_retry(sql)
    return validate_rows(rows, BlockingWindow)
