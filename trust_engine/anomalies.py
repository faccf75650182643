"""Anomaly Detector.

Compares a parsed document against the vendor's recently posted documents
and its canonical name. Each rule is independent; the result is the
deduplicated list of flags that fired, in rule order:

1. large_total: total above the 95th percentile of recent totals
2. new_format: low parse confidence from a vendor with posting history
3. vendor_name_mismatch: parsed vendor name far from the canonical name
4. unusual_line_count: line count far from the recent mean
5. duplicate_suspected: same total within a few days of a posted document
"""

import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from core.config import AnomalyConfig
from core.observability.logging import get_logger
from trust_engine.models import (
    AnomalyFlag,
    DocumentDraft,
    ParsedDraftFields,
    VendorProfile,
)
from trust_engine.repository import DraftRepository, VendorProfileRepository


logger = get_logger(__name__)

DEFAULT_ANOMALY_CONFIG = AnomalyConfig()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def percentile(values: Iterable[float], ratio: float) -> Optional[float]:
    """Nearest-rank percentile: sorted[ceil(ratio * n) - 1], index clamped.

    Returns None for an empty input.
    """
    ordered = sorted(values)
    if not ordered:
        return None
    index = math.ceil(ratio * len(ordered)) - 1
    index = max(0, min(index, len(ordered) - 1))
    return ordered[index]


def _bigrams(value: str) -> Counter:
    return Counter(value[i:i + 2] for i in range(len(value) - 1))


def dice_similarity(left: Optional[str], right: Optional[str]) -> float:
    """Sorensen-Dice similarity over character bigram multisets.

    Names are compared trimmed and lowercased. A blank side, equal names, or
    two names too short to have bigrams all count as similarity 1, so the
    mismatch rule stays silent when there is nothing to compare.
    """
    a = (left or "").strip().lower()
    b = (right or "").strip().lower()
    if not a or not b or a == b:
        return 1.0

    bigrams_a = _bigrams(a)
    bigrams_b = _bigrams(b)
    total = sum(bigrams_a.values()) + sum(bigrams_b.values())
    if total == 0:
        return 1.0

    overlap = sum((bigrams_a & bigrams_b).values())
    return 2 * overlap / total


def detect_anomalies(
    vendor: VendorProfile,
    history: Sequence[DocumentDraft],
    fields: ParsedDraftFields,
    config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
) -> List[AnomalyFlag]:
    """Apply every anomaly rule to one document.

    Args:
        vendor: The document's vendor profile
        history: The vendor's recent posted drafts, newest first
        fields: Parsed fields of the current document
        config: Rule thresholds

    Returns:
        Flags that fired, without duplicates
    """
    flags: List[AnomalyFlag] = []
    history = list(history)[:config.history_limit]

    # large_total
    totals = [d.parsed_total for d in history if d.parsed_total is not None]
    if len(totals) >= config.large_total_min_history and fields.parsed_total is not None:
        cutoff = percentile(totals, config.large_total_percentile)
        if cutoff is not None and fields.parsed_total > cutoff:
            flags.append(AnomalyFlag.LARGE_TOTAL)

    # new_format
    if (
        fields.confidence_score is not None
        and fields.confidence_score < config.new_format_confidence_max
        and vendor.total_posted >= config.new_format_min_posted
    ):
        flags.append(AnomalyFlag.NEW_FORMAT)

    # vendor_name_mismatch
    if 1 - dice_similarity(fields.vendor_name, vendor.vendor_name) > config.vendor_name_max_distance:
        flags.append(AnomalyFlag.VENDOR_NAME_MISMATCH)

    # unusual_line_count
    line_counts = [len(d.parsed_line_items) for d in history if d.parsed_line_items]
    if len(line_counts) >= config.line_count_min_history:
        mean = sum(line_counts) / len(line_counts)
        current = len(fields.parsed_line_items)
        if mean > 0 and abs(current - mean) / mean > config.line_count_max_deviation:
            flags.append(AnomalyFlag.UNUSUAL_LINE_COUNT)

    # duplicate_suspected
    if fields.parsed_total is not None and fields.parsed_date is not None:
        window = timedelta(days=config.duplicate_window_days)
        start = fields.parsed_date - window
        end = fields.parsed_date + window
        for draft in history:
            if draft.parsed_total is None or draft.parsed_date is None:
                continue
            if abs(draft.parsed_total - fields.parsed_total) > config.duplicate_total_tolerance:
                continue
            if start <= draft.parsed_date <= end:
                flags.append(AnomalyFlag.DUPLICATE_SUSPECTED)
                break

    return list(dict.fromkeys(flags))


class AnomalyDetector:
    """Loads vendor and history through the repositories, then applies the rules.

    Example:
        detector = AnomalyDetector(drafts, vendors)
        flags = await detector.compute_anomaly_flags("biz-1", "vendor-7", fields)
    """

    def __init__(
        self,
        drafts: DraftRepository,
        vendors: VendorProfileRepository,
        config: AnomalyConfig = DEFAULT_ANOMALY_CONFIG,
        clock: Clock = utc_now,
    ):
        self.drafts = drafts
        self.vendors = vendors
        self.config = config
        self.clock = clock

    async def load_history(self, business_id: str, vendor_profile_id: str) -> List[DocumentDraft]:
        """Posted drafts for the vendor inside the trailing window, newest first."""
        since = self.clock() - timedelta(days=self.config.history_window_days)
        rows = await self.drafts.list_posted_drafts(
            business_id,
            vendor_profile_id,
            since,
            self.config.history_limit,
        )
        return [DocumentDraft.model_validate(row) for row in rows]

    async def compute_anomaly_flags(
        self,
        business_id: str,
        vendor_profile_id: str,
        fields: ParsedDraftFields,
        vendor: Optional[VendorProfile] = None,
    ) -> List[AnomalyFlag]:
        """Flags for a document; an unknown vendor yields no flags.

        Args:
            business_id: Tenant
            vendor_profile_id: Vendor the document is linked to
            fields: Parsed fields of the current document
            vendor: Already-loaded profile, to skip a second read

        Returns:
            Deduplicated list of AnomalyFlag
        """
        if vendor is None:
            row = await self.vendors.find_vendor_profile(business_id, vendor_profile_id)
            if row is None:
                return []
            vendor = VendorProfile.model_validate(row)

        history = await self.load_history(business_id, vendor_profile_id)
        flags = detect_anomalies(vendor, history, fields, self.config)

        if flags:
            logger.info(
                "Anomalies detected",
                extra_fields={
                    "flags": [f.value for f in flags],
                    "history_size": len(history),
                },
            )
        return flags
