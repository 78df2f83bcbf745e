import datetime
import statistics
from collections.abc import Iterable, Sequence
from decimal import Decimal

from rapidfuzz import fuzz, process

from budget_reconciler.core.settings import DetectorTuning
from budget_reconciler.domain.periods import REFERENCE_PERIOD_DAYS, advance_date, months_ago
from budget_reconciler.domain.text import (
    common_tokens,
    guess_name,
    loose_key,
    most_common,
    name_similarity,
    normalize_description,
)
from budget_reconciler.logger import get_logger
from budget_reconciler.matching.matcher import PatternMatcher
from budget_reconciler.models import (
    BillingFrequency,
    PatternDraft,
    Subscription,
    SubscriptionCandidate,
    SubscriptionMatch,
    SubscriptionPattern,
    Transaction,
)
from budget_reconciler.storage.base import Repository

logger = get_logger(__name__)


def _clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def classify_interval(
    median_days: float,
    tolerance_ratio: float = 0.15,
    tolerance_days: float = 5.0,
) -> tuple[BillingFrequency, int | None]:
    """Nearest reference period within tolerance, otherwise a custom day count."""
    best: tuple[float, BillingFrequency] | None = None
    for frequency, reference in REFERENCE_PERIOD_DAYS.items():
        distance = abs(median_days - reference)
        if distance <= max(reference * tolerance_ratio, tolerance_days):
            if best is None or distance < best[0]:
                best = (distance, frequency)
    if best is not None:
        return best[1], None
    return "custom", max(1, round(median_days))


def interval_regularity(intervals: Sequence[int]) -> float:
    mean = statistics.fmean(intervals)
    if mean <= 0:
        return 0.0
    return _clamp(1.0 - statistics.pstdev(intervals) / mean)


def amount_stability(amounts: Sequence[Decimal]) -> float:
    values = [float(abs(amount)) for amount in amounts]
    mean = statistics.fmean(values)
    if mean <= 0:
        return 0.0
    return _clamp(1.0 - statistics.pstdev(values) / mean)


class RecurrenceDetector:
    def __init__(
        self,
        repository: Repository | None = None,
        matcher: PatternMatcher | None = None,
        tuning: DetectorTuning | None = None,
    ) -> None:
        self.repository = repository
        self.matcher = matcher or PatternMatcher()
        self.tuning = tuning or DetectorTuning.from_env()

    def group_transactions(self, transactions: Iterable[Transaction]) -> list[list[Transaction]]:
        """Group by normalized description, then rescue leftovers by loose key and fuzzy overlap."""
        exact: dict[str, list[Transaction]] = {}
        for transaction in transactions:
            exact.setdefault(normalize_description(transaction.description), []).append(transaction)

        groups: dict[str, list[Transaction]] = {}
        group_keys: dict[str, str] = {}
        leftovers: list[Transaction] = []
        for key, members in exact.items():
            if len(members) >= self.tuning.min_occurrences:
                groups[key] = members
                group_keys[key] = loose_key(key)
            else:
                leftovers.extend(members)

        cutoff = self.tuning.fuzzy_group_threshold * 100
        for transaction in leftovers:
            key = loose_key(transaction.description)
            if not key:
                continue
            loose_id = f"~{key}"
            if loose_id in groups:
                groups[loose_id].append(transaction)
                continue
            choices = {group_id: value for group_id, value in group_keys.items() if value}
            hit = process.extractOne(key, choices, scorer=fuzz.token_set_ratio, score_cutoff=cutoff)
            if hit is not None:
                groups[hit[2]].append(transaction)
                continue
            groups[loose_id] = [transaction]
            group_keys[loose_id] = key

        return list(groups.values())

    def analyze_group(self, members: Sequence[Transaction]) -> SubscriptionCandidate | None:
        if len(members) < self.tuning.min_occurrences:
            return None
        ordered = sorted(members, key=lambda transaction: (transaction.date, transaction.id))
        intervals = [
            (later.date - earlier.date).days for earlier, later in zip(ordered, ordered[1:])
        ]
        median = statistics.median(intervals)
        if median <= 0:
            return None

        frequency, custom_days = classify_interval(
            median,
            self.tuning.period_tolerance_ratio,
            self.tuning.period_tolerance_days,
        )
        regularity = interval_regularity(intervals)
        stability = amount_stability([transaction.amount for transaction in ordered])
        if stability < self.tuning.stability_floor and regularity < self.tuning.near_perfect_regularity:
            return None

        confidence = (
            self.tuning.regularity_weight * regularity + self.tuning.stability_weight * stability
        )
        if confidence < self.tuning.min_confidence:
            return None

        latest = ordered[-1]
        descriptions = [transaction.description for transaction in ordered]
        normalized = [normalize_description(description) for description in descriptions]
        exact_pattern = most_common(normalized) or normalized[-1]
        patterns = [PatternDraft(pattern=exact_pattern, pattern_type="exact", confidence_score=1.0)]
        shared = " ".join(common_tokens(descriptions))
        if shared:
            patterns.append(
                PatternDraft(
                    pattern=shared,
                    pattern_type="fuzzy",
                    confidence_score=round(confidence, 4),
                )
            )
        # every contributing description must be matched by at least one pattern
        for variant in dict.fromkeys(normalized):
            if not any(self.matcher.pattern_score(draft, variant) is not None for draft in patterns):
                patterns.append(PatternDraft(pattern=variant, pattern_type="exact", confidence_score=1.0))

        return SubscriptionCandidate(
            name=guess_name(most_common(descriptions) or latest.description),
            amount=abs(latest.amount),
            currency=most_common(transaction.currency for transaction in ordered) or latest.currency,
            billing_frequency=frequency,
            custom_frequency_days=custom_days,
            category_id=most_common(
                transaction.category_id for transaction in ordered if transaction.category_id
            ),
            confidence=round(confidence, 4),
            transaction_ids=tuple(transaction.id for transaction in ordered),
            patterns=tuple(patterns),
            first_payment_date=ordered[0].date,
            last_payment_date=latest.date,
            next_payment_date=advance_date(latest.date, frequency, custom_days),
            total_spend=sum((abs(transaction.amount) for transaction in ordered), Decimal("0")),
            interval_regularity=round(regularity, 4),
            amount_stability=round(stability, 4),
            reason=(
                f"{len(ordered)} payments about every {median:g} days "
                f"(regularity {regularity:.2f}, amount stability {stability:.2f})"
            ),
        )

    def is_duplicate(self, candidate: SubscriptionCandidate, existing: Iterable[Subscription]) -> bool:
        tolerance = Decimal(str(self.tuning.duplicate_amount_tolerance))
        for subscription in existing:
            if not subscription.is_active:
                continue
            if (
                name_similarity(candidate.name, subscription.name) > self.tuning.duplicate_name_similarity
                and abs(candidate.amount - subscription.amount) <= tolerance
            ):
                return True
        return False

    def is_stale(self, candidate: SubscriptionCandidate, reference_date: datetime.date) -> bool:
        if candidate.billing_frequency != "monthly":
            return False
        return candidate.last_payment_date < months_ago(reference_date, self.tuning.stale_monthly_months)

    def detect_subscriptions(
        self,
        transactions: Iterable[Transaction],
        *,
        include_income: bool = False,
        existing: Iterable[Subscription] = (),
        reference_date: datetime.date | None = None,
    ) -> list[SubscriptionCandidate]:
        transactions = list(transactions)
        if not transactions:
            return []
        if reference_date is None:
            reference_date = max(transaction.date for transaction in transactions)
        allowed = {"expense", "income"} if include_income else {"expense"}
        eligible = [transaction for transaction in transactions if transaction.type in allowed]
        existing = list(existing)

        candidates = []
        dropped_duplicates = 0
        dropped_stale = 0
        for members in self.group_transactions(eligible):
            candidate = self.analyze_group(members)
            if candidate is None:
                continue
            if self.is_duplicate(candidate, existing):
                dropped_duplicates += 1
                continue
            if self.is_stale(candidate, reference_date):
                dropped_stale += 1
                continue
            candidates.append(candidate)

        candidates.sort(key=lambda found: (-found.confidence, -found.total_spend, found.name))
        logger.info(
            "[DETECT] %s candidates from %s transactions "
            "(skipped existing: %s, skipped stale: %s)",
            len(candidates),
            len(eligible),
            dropped_duplicates,
            dropped_stale,
        )
        return candidates

    def _require_repository(self) -> Repository:
        if self.repository is None:
            raise RuntimeError("RecurrenceDetector has no repository configured")
        return self.repository

    async def match_existing_subscriptions(
        self,
        transactions: Iterable[Transaction] | None = None,
    ) -> list[SubscriptionMatch]:
        repository = self._require_repository()
        if transactions is None:
            transactions = await repository.find_all_transactions()
        subscriptions = await repository.find_active_subscriptions()
        patterns = await repository.find_active_patterns()
        matches = self.matcher.match_all(transactions, patterns, subscriptions)
        logger.info("[MATCH] %s transactions matched existing subscriptions", len(matches))
        return matches

    async def create_patterns_for_subscription(
        self,
        subscription_id: str,
        drafts: Iterable[PatternDraft],
        created_by: str = "system",
    ) -> list[SubscriptionPattern]:
        repository = self._require_repository()
        created = []
        for draft in drafts:
            pattern = SubscriptionPattern(
                subscription_id=subscription_id,
                pattern=draft.pattern,
                pattern_type=draft.pattern_type,
                confidence_score=draft.confidence_score,
                created_by=created_by,
            )
            created.append(await repository.create_subscription_pattern(pattern))
        return created
