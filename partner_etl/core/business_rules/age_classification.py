"""
Document-age classification.

A pure decision tree over an explicit input: all catalog lookups happen
before the tree runs, so the same input always yields the same category.
"""

import calendar
from datetime import date

from pydantic import BaseModel, ConfigDict

from partner_etl.core.models.catalog_entry import AgeStatus

TWELVE_MONTHS = 12


class AgeClassificationInput(BaseModel):
    """
    Everything the age decision tree looks at.

    Attributes:
        inception_date: Fund/series inception, if the row carries one
        filing_date: Reference date of the filing being imported
        fund_known: The fund code already exists in the client's catalog
        document_known: The document number already exists in the catalog
        prior_status: Catalog age status before this filing, if any
    """

    model_config = ConfigDict(frozen=True)

    inception_date: date | None = None
    filing_date: date
    fund_known: bool
    document_known: bool
    prior_status: AgeStatus | None = None


def full_months_between(start: date, end: date) -> int:
    """
    Whole calendar months from start to end (negative when end precedes start).

    A month counts once the day-of-month is reached again; when the start day
    does not exist in the end month (Jan 31 -> Feb 28), the last day of the
    end month completes it.

    Examples:
        >>> full_months_between(date(2024, 9, 1), date(2025, 9, 1))
        12
        >>> full_months_between(date(2024, 9, 2), date(2025, 9, 1))
        11
        >>> full_months_between(date(2024, 1, 31), date(2024, 2, 29))
        1
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if months > 0 and end.day < start.day:
        last_day = calendar.monthrange(end.year, end.month)[1]
        if end.day < last_day:
            months -= 1
    elif months < 0 and end.day > start.day:
        months += 1
    return months


def classify_document_age(inp: AgeClassificationInput) -> AgeStatus:
    """
    Classify a document row into exactly one AgeStatus.

    1. Inception at least twelve full months before filing -> TwelveConsecutiveMonths
    2. Fund code unknown to the catalog -> BrandNewFund
    3. Fund known but document number unknown -> NewSeries
    4. Otherwise -> NewFund

    prior_status never overrides the tree: a NewFund document that reaches
    twelve months is reclassified.
    """
    if inp.inception_date is not None and full_months_between(inp.inception_date, inp.filing_date) >= TWELVE_MONTHS:
        return AgeStatus.TWELVE_CONSECUTIVE_MONTHS
    if not inp.fund_known:
        return AgeStatus.BRAND_NEW_FUND
    if not inp.document_known:
        return AgeStatus.NEW_SERIES
    return AgeStatus.NEW_FUND
