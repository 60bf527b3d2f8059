# coding=utf-8

from .aggregator import CaptionAggregator, RemoveUtterance, UpdateUtterance
from .expiry import ExpiryScheduler
from .merge import classify_tier, merge
from .models import (
    CaptionEvent,
    FinalPolicy,
    Participant,
    SessionPreferences,
    Tier,
    Utterance,
)
from .router import EventRouter, RouteDecision, parse_event
from .store import UtteranceStore
from .subscription import LocalSession, SubscriptionController

__all__ = [
    "CaptionAggregator",
    "CaptionEvent",
    "EventRouter",
    "ExpiryScheduler",
    "FinalPolicy",
    "LocalSession",
    "Participant",
    "RemoveUtterance",
    "RouteDecision",
    "SessionPreferences",
    "SubscriptionController",
    "Tier",
    "UpdateUtterance",
    "Utterance",
    "UtteranceStore",
    "classify_tier",
    "merge",
    "parse_event",
]
