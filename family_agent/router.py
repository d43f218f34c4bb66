"""Intent routing and multi-intent detection.

Two strategies sit behind the same coroutines: keyword heuristics (default,
deterministic) and an LLM classifier passed in as ``classifier``. Neither
raises; a failing classifier degrades to the ``unknown`` domain or to
single-intent handling.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from family_agent.llm.classifier import IntentClassifier
from family_agent.models import Domain, IntentRoute

LOGGER = logging.getLogger(__name__)

HINT_CONFIDENCE = 0.95
MAX_KEYWORD_CONFIDENCE = 0.9
KEYWORD_CONFIDENCE_BOOST = 0.3
MIN_MULTI_INTENT_LENGTH = 5

DOMAIN_PATTERNS: dict[Domain, list[re.Pattern[str]]] = {
    Domain.TASKS: [
        re.compile(r"\b(task|tasks|todo|todos|to-do|to do)\b", re.I),
        re.compile(r"\b(remind|reminder|reminders)\b", re.I),
        re.compile(r"\b(chore|chores|assignment|assignments)\b", re.I),
        re.compile(r"\b(complete|finish|done|mark done|check off)\b", re.I),
        re.compile(r"\b(assign|assigned|assignee)\b", re.I),
        re.compile(r"\b(due|deadline|overdue)\b", re.I),
        re.compile(r"\b(priority|urgent|high priority)\b", re.I),
    ],
    Domain.CALENDAR: [
        re.compile(r"\b(calendar|calendars|schedule|schedules)\b", re.I),
        re.compile(r"\b(event|events|appointment|appointments)\b", re.I),
        re.compile(r"\b(meeting|meetings)\b", re.I),
        re.compile(r"\b(when is|what's on|what time)\b", re.I),
        re.compile(r"\b(free time|available|availability|busy)\b", re.I),
        re.compile(r"\b(book|booking|reschedule|move|shift)\b.*\b(to|for)\b", re.I),
        re.compile(r"\b(training|practice|lesson|class)\b", re.I),
    ],
    Domain.MEALS: [
        re.compile(r"\b(meal|meals|dinner|lunch|breakfast)\b", re.I),
        re.compile(r"\b(recipe|recipes|cook|cooking)\b", re.I),
        re.compile(r"\b(menu|menus|meal plan|meal planning)\b", re.I),
        re.compile(r"\b(grocery|groceries|ingredients)\b", re.I),
        re.compile(r"\b(eat|eating|food|foods)\b", re.I),
    ],
    Domain.LISTS: [
        re.compile(r"\b(list|lists|shopping list|shopping)\b", re.I),
        re.compile(r"\b(buy|purchase|need to get)\b", re.I),
        re.compile(r"\b(add to list|remove from list)\b", re.I),
        re.compile(r"\b(check list|checklist)\b", re.I),
    ],
}

MULTI_INTENT_INDICATORS = [
    re.compile(r"\b(and also|and then|also|plus|as well as)\b", re.I),
    re.compile(r"\b(after that|then|next)\b", re.I),
    re.compile(r"[,;]\s*(also|and)\s+", re.I),
]


@dataclass(slots=True)
class MultiIntentResult:
    """Whether one message asks for work in several domains."""

    is_multi_intent: bool
    domains: list[Domain] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)
    # Set when a classifier already picked a single domain for this message.
    route: IntentRoute | None = None


def score_domains(message: str) -> dict[Domain, list[str]]:
    """Return matched fragments per domain, for domains with at least one match."""

    matches: dict[Domain, list[str]] = {}
    for domain, patterns in DOMAIN_PATTERNS.items():
        for pattern in patterns:
            found = pattern.search(message)
            if found:
                matches.setdefault(domain, []).append(found.group(0))
    return matches


def has_multi_intent_indicator(message: str) -> bool:
    return any(pattern.search(message) for pattern in MULTI_INTENT_INDICATORS)


async def route_intent(
    message: str,
    domain_hint: Domain | None = None,
    classifier: IntentClassifier | None = None,
    timezone: str | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> IntentRoute:
    """Pick the single best domain for a message."""

    log = logger or LOGGER
    if domain_hint is not None and domain_hint != Domain.UNKNOWN:
        log.debug("Using domain hint for routing: %s", domain_hint.value)
        return IntentRoute(
            domain=Domain(domain_hint),
            confidence=HINT_CONFIDENCE,
            reasons=[f"Domain hint provided: {domain_hint.value}"],
        )

    if classifier is not None:
        return await _route_with_classifier(message, classifier, timezone, log)
    return _route_with_keywords(message, log)


async def detect_multi_intent(
    message: str,
    classifier: IntentClassifier | None = None,
    timezone: str | None = None,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
) -> MultiIntentResult:
    """Decide whether a message should fan out to more than one domain."""

    log = logger or LOGGER
    if len(message.strip()) < MIN_MULTI_INTENT_LENGTH:
        return MultiIntentResult(is_multi_intent=False, reasons=["Message too short to split"])
    if classifier is not None:
        return await _detect_with_classifier(message, classifier, timezone, log)

    scores = score_domains(message)
    reasons = [f"{domain.value}: {len(found)} pattern matches" for domain, found in scores.items()]
    domains = sorted(scores, key=lambda d: len(scores[d]), reverse=True)
    is_multi = len(domains) >= 2 and has_multi_intent_indicator(message)
    if is_multi:
        log.debug("Multi-intent detected: domains=%s", [d.value for d in domains])
    return MultiIntentResult(is_multi_intent=is_multi, domains=domains, reasons=reasons)


def _route_with_keywords(message: str, log: logging.Logger | logging.LoggerAdapter) -> IntentRoute:
    scores = score_domains(message)
    if not scores:
        log.debug("No domain patterns matched, routing to unknown")
        return IntentRoute(domain=Domain.UNKNOWN, confidence=0.0, reasons=["No domain patterns matched"])

    best_domain = Domain.UNKNOWN
    best_score = 0
    for domain, found in scores.items():
        if len(found) > best_score:
            best_domain, best_score = domain, len(found)

    total = sum(len(found) for found in scores.values())
    confidence = min(best_score / (total + 1) + KEYWORD_CONFIDENCE_BOOST, MAX_KEYWORD_CONFIDENCE)
    route = IntentRoute(
        domain=best_domain,
        confidence=confidence,
        reasons=[f'Matched pattern: "{fragment}"' for fragment in scores[best_domain]],
    )
    log.debug("Intent routed: domain=%s confidence=%.2f", route.domain.value, route.confidence)
    return route


async def _route_with_classifier(
    message: str,
    classifier: IntentClassifier,
    timezone: str | None,
    log: logging.Logger | logging.LoggerAdapter,
) -> IntentRoute:
    try:
        result = await classifier.classify(message, timezone=timezone)
    except Exception as exc:  # noqa: BLE001
        log.warning("Intent classification failed, routing to unknown: %s", exc)
        return IntentRoute(domain=Domain.UNKNOWN, confidence=0.0, reasons=[f"Routing failed: {exc}"])
    return IntentRoute(domain=result.domain, confidence=result.confidence, reasons=list(result.reasons))


async def _detect_with_classifier(
    message: str,
    classifier: IntentClassifier,
    timezone: str | None,
    log: logging.Logger | logging.LoggerAdapter,
) -> MultiIntentResult:
    try:
        result = await classifier.classify(message, timezone=timezone)
    except Exception as exc:  # noqa: BLE001
        log.warning("Multi-intent classification failed, assuming single intent: %s", exc)
        return MultiIntentResult(is_multi_intent=False, reasons=[f"Classification failed: {exc}"])

    domains: list[Domain] = []
    for domain in result.multi_domains or []:
        if domain != Domain.UNKNOWN and domain not in domains:
            domains.append(domain)
    is_multi = result.is_multi_intent and len(domains) >= 2
    if is_multi:
        return MultiIntentResult(is_multi_intent=True, domains=domains, reasons=list(result.reasons))
    return MultiIntentResult(
        is_multi_intent=False,
        domains=[result.domain],
        reasons=list(result.reasons),
        route=IntentRoute(domain=result.domain, confidence=result.confidence, reasons=list(result.reasons)),
    )
