import re
from collections.abc import Iterable
from decimal import Decimal

from budget_reconciler.core.settings import MatcherTuning
from budget_reconciler.domain.periods import match_window_days
from budget_reconciler.domain.text import normalize_description, token_set_ratio
from budget_reconciler.logger import get_logger
from budget_reconciler.models import (
    PatternDraft,
    PatternType,
    Subscription,
    SubscriptionMatch,
    SubscriptionPattern,
    Transaction,
)

logger = get_logger(__name__)

PATTERN_PRECEDENCE: tuple[PatternType, ...] = ("exact", "regex", "fuzzy")


class PatternMatcher:
    """Classifies transactions against the stored patterns of known subscriptions.

    Patterns are tried exact first, then regex, then fuzzy; inside each type the
    most trusted pattern goes first. A hit also needs the amount and the date to
    line up with the subscription, and the first hit whose combined confidence
    reaches ``tuning.min_confidence`` wins.
    """

    def __init__(self, tuning: MatcherTuning | None = None) -> None:
        self.tuning = tuning or MatcherTuning.from_env()
        self._regex_cache: dict[str, re.Pattern[str] | None] = {}

    def compile_regex(self, pattern: str) -> re.Pattern[str] | None:
        if pattern in self._regex_cache:
            return self._regex_cache[pattern]
        try:
            compiled: re.Pattern[str] | None = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            logger.warning("[MATCH] Ignoring malformed regex pattern %r: %s", pattern, exc)
            compiled = None
        self._regex_cache[pattern] = compiled
        return compiled

    def pattern_score(self, pattern: SubscriptionPattern | PatternDraft, normalized: str) -> float | None:
        """Base score of ``pattern`` against a normalized description, or None on a miss."""
        if pattern.pattern_type == "exact":
            if normalize_description(pattern.pattern) == normalized:
                return self.tuning.exact_score
            return None
        if pattern.pattern_type == "regex":
            compiled = self.compile_regex(pattern.pattern)
            if compiled is not None and compiled.search(normalized):
                return self.tuning.regex_score
            return None
        ratio = token_set_ratio(normalize_description(pattern.pattern), normalized)
        if ratio >= self.tuning.fuzzy_threshold:
            return ratio
        return None

    def amount_closeness(self, amount: Decimal, subscription: Subscription) -> float | None:
        expected = abs(subscription.amount)
        difference = abs(abs(amount) - expected)
        if expected == 0:
            return 1.0 if difference == 0 else None
        tolerance = expected * Decimal(str(self.tuning.amount_tolerance))
        if difference > tolerance:
            return None
        if tolerance == 0:
            return 1.0
        return 1.0 - float(difference / tolerance)

    def date_closeness(self, transaction: Transaction, subscription: Subscription) -> float | None:
        window = match_window_days(
            subscription.billing_frequency,
            subscription.custom_frequency_days,
            monthly_window_days=self.tuning.monthly_window_days,
            min_window_days=self.tuning.min_window_days,
        )
        distance = abs((transaction.date - subscription.next_payment_date).days)
        if distance > window:
            return None
        return 1.0 - distance / window

    def match(
        self,
        transaction: Transaction,
        patterns: Iterable[SubscriptionPattern],
        subscriptions: Iterable[Subscription],
    ) -> SubscriptionMatch | None:
        if transaction.is_subscription:
            return None

        active_subscriptions = {sub.id: sub for sub in subscriptions if sub.is_active}
        usable = [
            pattern
            for pattern in patterns
            if pattern.is_active and pattern.subscription_id in active_subscriptions
        ]
        if not usable:
            return None

        normalized = normalize_description(transaction.description)
        for pattern_type in PATTERN_PRECEDENCE:
            typed = sorted(
                (pattern for pattern in usable if pattern.pattern_type == pattern_type),
                key=lambda pattern: pattern.confidence_score,
                reverse=True,
            )
            for pattern in typed:
                base = self.pattern_score(pattern, normalized)
                if base is None:
                    continue
                subscription = active_subscriptions[pattern.subscription_id]
                amount_score = self.amount_closeness(transaction.amount, subscription)
                if amount_score is None:
                    continue
                date_score = self.date_closeness(transaction, subscription)
                if date_score is None:
                    continue

                confidence = (
                    self.tuning.pattern_weight * base
                    + self.tuning.amount_weight * amount_score
                    + self.tuning.date_weight * date_score
                )
                if confidence < self.tuning.min_confidence:
                    continue

                logger.debug(
                    "[MATCH] %r -> %s via %s pattern (confidence %.2f)",
                    transaction.description,
                    subscription.name,
                    pattern_type,
                    confidence,
                )
                return SubscriptionMatch(
                    transaction=transaction,
                    subscription=subscription,
                    pattern_id=pattern.id,
                    pattern_type=pattern_type,
                    confidence=round(confidence, 4),
                )
        return None

    def match_all(
        self,
        transactions: Iterable[Transaction],
        patterns: Iterable[SubscriptionPattern],
        subscriptions: Iterable[Subscription],
    ) -> list[SubscriptionMatch]:
        patterns = list(patterns)
        subscriptions = list(subscriptions)
        matches = []
        for transaction in transactions:
            found = self.match(transaction, patterns, subscriptions)
            if found is not None:
                matches.append(found)
        matches.sort(key=lambda found: found.confidence, reverse=True)
        return matches


def adjust_confidence(score: float, was_correct: bool) -> float:
    """Nudge a pattern's confidence towards 1 on a hit, drop it on a false positive."""
    if was_correct:
        return round(min(1.0, score + 0.1 * (1.0 - score)), 4)
    return round(max(0.1, score - 0.15), 4)
