import threading
from dataclasses import replace

import pytest

from swipematch import MatchingConfig, MatchingEngine
from swipematch.data.memory import InMemoryMatchStore
from swipematch.data.profiles import SubscriptionTier
from swipematch.data.records import MatchRecord, MatchStatus, MatchType, SwipeContext, pair_key
from swipematch.errors import (
    AlreadyActedError,
    ForbiddenError,
    LimitExceededError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from swipematch.limits import DailyLimits, TierLimits, TierQuota
from swipematch.serving.outbox import NotificationType

from conftest import NOW, make_profile


def _titles(engine, user_id):
    return [n.title for n in engine.notifier.for_user(user_id)]


def _events(engine, user_id):
    return [event for uid, event, _ in engine.realtime.events if uid == user_id]


# ======================================================================
# Swipes and match detection
# ======================================================================

def test_mutual_like_creates_match(engine):
    first = engine.swipe("alice", "bob", "like")
    assert not first.is_match

    second = engine.swipe("bob", "alice", "like")
    assert second.is_match and second.match_created
    match = second.match
    assert match.users == ("alice", "bob")
    assert match.status is MatchStatus.ACTIVE
    assert match.quality.match_type is MatchType.REGULAR
    assert match.initiated_by == "bob"

    assert engine.swipes.get(first.swipe.swipe_id).match_id == match.match_id
    assert second.swipe.match_id == match.match_id

    for user in ("alice", "bob"):
        assert "It's a Match! 🎉" in _titles(engine, user)
        assert "match:new" in _events(engine, user)
        assert engine.user_stats(user)["matches"] == 1
    assert engine.metrics.counts["match.created"] == 1
    assert [name for name, _ in engine.metrics.histograms] == ["match.compatibility"]


def test_match_payload(engine):
    engine.swipe("alice", "bob", "like")
    payload = engine.swipe("bob", "alice", "like").to_dict()
    assert payload["is_match"]
    assert payload["match"]["users"] == ["alice", "bob"]
    assert payload["match"]["match_type"] == "regular"
    assert payload["swipe"]["action"] == "like"


def test_swipe_payload_carries_rating_change(engine):
    payload = engine.swipe("alice", "bob", "like").to_dict()
    assert payload["rating"] == {
        "rating": 1506,
        "delta": 6.0,
        "league": "Gold",
        "target_delta": -6.0,
        "target_league": "Silver",
    }


def test_nope_never_matches(engine):
    engine.swipe("alice", "bob", "like")
    outcome = engine.swipe("bob", "alice", "nope")
    assert not outcome.is_match
    assert engine.matches.active() == []


def test_like_after_reverse_nope_does_not_match(engine):
    engine.swipe("alice", "bob", "nope")
    assert not engine.swipe("bob", "alice", "like").is_match


def test_superlike_on_either_side_makes_superlike_match(engine):
    engine.swipe("alice", "bob", "superlike", {"superlike_message": "hi!"})
    assert engine.notifier.for_user("bob")[0].type is NotificationType.SUPER_LIKE
    assert engine.notifier.for_user("bob")[0].body == "hi!"

    outcome = engine.swipe("bob", "alice", "like")
    assert outcome.match.quality.match_type is MatchType.SUPERLIKE_MATCH


def test_swipe_records_provenance(engine):
    engine.swipe("alice", "carol", "like")
    outcome = engine.swipe("alice", "bob", "like", SwipeContext(photo_index=2, platform="ios"))
    swipe = outcome.swipe

    assert swipe.compatibility.score == pytest.approx(0.975)
    assert swipe.distance_km == 0.0
    assert swipe.counter_snapshot.likes == 1
    assert swipe.counter_snapshot.swipes == 1
    assert swipe.context.platform == "ios"
    assert outcome.remaining["likes"] == 98


def test_rating_updated_per_swipe(engine):
    outcome = engine.swipe("alice", "bob", "like")
    assert outcome.rating.swiper_after == 1506
    assert engine.profiles.get_profile("bob").rating == 1494


def test_lifetime_stats(engine):
    engine.swipe("alice", "bob", "like")
    engine.swipe("alice", "carol", "nope")
    engine.swipe("alice", "dave", "superlike")
    stats = engine.user_stats("alice")
    assert (stats["swipes"], stats["likes"], stats["passes"], stats["superlikes"]) == (3, 1, 1, 1)
    assert stats["league"] == "Gold"


def test_swipe_metrics(engine):
    engine.swipe("alice", "bob", "like")
    assert engine.metrics.counts["swipe.like"] == 1
    assert [name for name, _ in engine.metrics.timings] == ["swipe.duration"]


# ======================================================================
# Validation
# ======================================================================

def test_self_swipe_rejected(engine):
    with pytest.raises(ValidationError):
        engine.swipe("alice", "alice", "like")


def test_unknown_action_rejected(engine):
    with pytest.raises(ValidationError):
        engine.swipe("alice", "bob", "wink")


def test_malformed_context_rejected(engine):
    with pytest.raises(ValidationError):
        engine.swipe("alice", "bob", "like", {"favourite_colour": "blue"})


def test_unknown_user(engine):
    with pytest.raises(NotFoundError):
        engine.swipe("alice", "ghost", "like")


def test_duplicate_swipe_rejected_until_undone(engine):
    engine.swipe("alice", "bob", "like")
    with pytest.raises(AlreadyActedError):
        engine.swipe("alice", "bob", "nope")

    engine.undo("alice")
    assert engine.swipe("alice", "bob", "nope").swipe.active


def test_failed_swipe_does_not_spend_quota(engine):
    engine.swipe("alice", "bob", "like")
    with pytest.raises(AlreadyActedError):
        engine.swipe("alice", "bob", "like")
    assert engine.remaining_quota("alice")["likes"] == 99


# ======================================================================
# Daily limits
# ======================================================================

def _limited_engine(clock, people, **quota):
    limits = TierLimits()
    limits.quotas["free"] = TierQuota(**quota)
    return MatchingEngine.in_memory(people.values(), config=MatchingConfig(limits=limits), clock=clock)


def test_free_like_limit(clock, people):
    engine = _limited_engine(clock, people, likes=2, superlikes=1, undos=1)
    engine.swipe("alice", "bob", "like")
    engine.swipe("alice", "carol", "like")
    with pytest.raises(LimitExceededError) as exc_info:
        engine.swipe("alice", "dave", "like")
    assert exc_info.value.limit_type == "likes"

    # passes are never capped
    assert engine.swipe("alice", "dave", "nope").swipe.active


def test_free_superlike_limit_and_daily_reset(engine, clock):
    engine.swipe("alice", "bob", "superlike")
    with pytest.raises(LimitExceededError):
        engine.swipe("alice", "dave", "superlike")

    clock.advance(days=1)
    assert engine.swipe("alice", "dave", "superlike").swipe.active


def test_paid_tiers_unlimited(clock, people):
    people["alice"] = replace(people["alice"], tier=SubscriptionTier.PLUS)
    engine = MatchingEngine.in_memory(people.values(), clock=clock)
    engine.swipe("alice", "bob", "superlike")
    engine.swipe("alice", "carol", "superlike")
    outcome = engine.swipe("alice", "dave", "superlike")
    assert outcome.remaining["superlikes"] is None


# ======================================================================
# Undo
# ======================================================================

def test_undo_defaults_to_latest_swipe(engine, clock):
    engine.swipe("alice", "bob", "like")
    clock.advance(seconds=5)
    latest = engine.swipe("alice", "carol", "nope")

    outcome = engine.undo("alice")
    assert outcome.swipe.swipe_id == latest.swipe.swipe_id
    assert not outcome.swipe.active
    assert engine.swipes.find_active("alice", "bob") is not None


def test_free_undo_once_per_day(engine, clock):
    engine.swipe("alice", "bob", "like")
    engine.swipe("alice", "carol", "like")
    engine.undo("alice")
    with pytest.raises(LimitExceededError):
        engine.undo("alice")

    clock.advance(days=1)
    engine.undo("alice")


def test_paid_undo_unlimited(clock, people):
    people["alice"] = replace(people["alice"], tier=SubscriptionTier.GOLD)
    engine = MatchingEngine.in_memory(people.values(), clock=clock)
    engine.swipe("alice", "bob", "like")
    engine.swipe("alice", "carol", "like")
    engine.undo("alice")
    engine.undo("alice")
    assert engine.swipes.latest_active("alice") is None


def test_undo_errors(engine):
    with pytest.raises(NotFoundError):
        engine.undo("alice")

    swipe = engine.swipe("bob", "alice", "like").swipe
    with pytest.raises(ForbiddenError):
        engine.undo("alice", swipe.swipe_id)
    with pytest.raises(NotFoundError):
        engine.undo("alice", "missing")


def test_undo_already_undone_swipe(clock, people):
    people["alice"] = replace(people["alice"], tier=SubscriptionTier.GOLD)
    engine = MatchingEngine.in_memory(people.values(), clock=clock)
    swipe = engine.swipe("alice", "bob", "like").swipe
    engine.undo("alice", swipe.swipe_id)
    with pytest.raises(ValidationError):
        engine.undo("alice", swipe.swipe_id)


def test_undo_window(clock, people):
    config = MatchingConfig()
    config.swipes.undo_window_seconds = 10
    engine = MatchingEngine.in_memory(people.values(), config=config, clock=clock)
    engine.swipe("alice", "bob", "like")
    clock.advance(seconds=11)
    with pytest.raises(ValidationError):
        engine.undo("alice")
    # a rejected undo does not spend the quota
    assert engine.remaining_quota("alice")["undos"] == 1


def test_undo_of_matched_swipe_deletes_match_but_keeps_rating(engine):
    engine.swipe("alice", "bob", "like")
    outcome = engine.swipe("bob", "alice", "like")
    rating_after_swipe = engine.profiles.get_profile("bob").rating

    undo = engine.undo("bob")
    assert undo.removed_match.match_id == outcome.match.match_id
    assert engine.matches.get(outcome.match.match_id).status is MatchStatus.DELETED
    assert "Match Removed" in _titles(engine, "alice")
    assert "match:removed" in _events(engine, "alice")
    assert engine.profiles.get_profile("bob").rating == rating_after_swipe
    # alice's like is pending again once the match is gone
    assert engine.who_liked_me("bob").count == 1


def test_like_after_undoing_a_match_matches_again(engine):
    engine.swipe("alice", "bob", "like")
    first = engine.swipe("bob", "alice", "like").match
    engine.undo("bob")

    again = engine.swipe("bob", "alice", "like")
    assert again.is_match and again.match_created
    assert again.match.match_id != first.match_id

    active = engine.matches.active()
    assert [m.match_id for m in active] == [again.match.match_id]
    assert engine.matches.get(first.match_id).status is MatchStatus.DELETED
    assert engine.swipes.find_active("alice", "bob").match_id == again.match.match_id
    assert engine.swipes.find_active("bob", "alice").match_id == again.match.match_id


# ======================================================================
# Unmatch and block
# ======================================================================

@pytest.fixture
def matched(engine):
    engine.swipe("alice", "bob", "like")
    return engine.swipe("bob", "alice", "like").match


def test_unmatch(engine, matched):
    change = engine.unmatch(matched.match_id, "alice", reason="no_spark")
    assert change.match.status is MatchStatus.UNMATCHED
    assert change.match.status_changed_by == "alice"
    assert change.match.status_reason == "no_spark"
    assert engine.conversations.purged == [(matched.match_id, False)]
    assert "Match Removed" in _titles(engine, "bob")
    assert "match:removed" in _events(engine, "bob")
    assert engine.metrics.counts["match.unmatch"] == 1

    with pytest.raises(ValidationError):
        engine.unmatch(matched.match_id, "bob")


def test_unmatch_requires_participant(engine, matched):
    with pytest.raises(ForbiddenError):
        engine.unmatch(matched.match_id, "carol")
    with pytest.raises(NotFoundError):
        engine.unmatch("missing", "alice")


def test_block(engine, matched):
    notified_before = len(engine.notifier.for_user("bob"))
    ratings_before = [engine.profiles.get_profile(u).rating for u in ("alice", "bob")]
    change = engine.block(matched.match_id, "alice")

    assert change.match.status is MatchStatus.BLOCKED
    assert "bob" in engine.profiles.get_profile("alice").blocked_users
    assert engine.conversations.purged == [(matched.match_id, True)]
    assert len(engine.notifier.for_user("bob")) == notified_before
    assert [engine.profiles.get_profile(u).rating for u in ("alice", "bob")] == ratings_before


def test_get_and_list_matches(engine, matched):
    engine.record_message(matched.match_id, "alice")
    view = engine.get_match(matched.match_id, "bob")
    assert view.other_user_id == "alice"
    assert view.unread_count == 1

    assert [v.match_id for v in engine.list_matches("alice")] == [matched.match_id]
    with pytest.raises(ForbiddenError):
        engine.get_match(matched.match_id, "carol")


def test_refresh_engagement_rescores_stored_match(engine, matched, clock):
    engine.record_message(matched.match_id, "alice")
    clock.advance(days=2)
    assert engine.refresh_engagement(matched.match_id).engagement_score == 15
    assert engine.get_match(matched.match_id, "bob").engagement_score == 15


# ======================================================================
# Who liked me
# ======================================================================

def test_who_liked_me_is_blurred_for_free_users(engine):
    engine.swipe("bob", "alice", "like")
    engine.swipe("dave", "alice", "superlike")
    result = engine.who_liked_me("alice")
    assert result.count == 2
    assert result.blurred
    assert result.likes == []


def test_who_liked_me_lists_for_gold(clock, people):
    people["alice"] = replace(people["alice"], tier=SubscriptionTier.GOLD)
    engine = MatchingEngine.in_memory(people.values(), clock=clock)
    engine.swipe("bob", "alice", "like")
    engine.swipe("dave", "alice", "superlike", {"superlike_message": "coffee?"})
    engine.swipe("carol", "alice", "nope")

    result = engine.who_liked_me("alice")
    assert not result.blurred
    by_user = {like.user_id: like for like in result.likes}
    assert set(by_user) == {"bob", "dave"}
    assert by_user["dave"].is_superlike
    assert by_user["dave"].message == "coffee?"

    engine.swipe("alice", "bob", "like")
    assert [like.user_id for like in engine.who_liked_me("alice").likes] == ["dave"]


# ======================================================================
# Concurrency and effect isolation
# ======================================================================

def test_concurrent_mutual_likes_create_one_match(clock):
    pairs = [(f"m{i}", f"f{i}") for i in range(25)]
    profiles = []
    for m, f in pairs:
        profiles.append(make_profile(m, gender="male"))
        profiles.append(make_profile(f))
    engine = MatchingEngine.in_memory(profiles, clock=clock)

    def like(a, b, barrier):
        barrier.wait()
        engine.swipe(a, b, "like")

    for m, f in pairs:
        barrier = threading.Barrier(2)
        threads = [
            threading.Thread(target=like, args=(m, f, barrier)),
            threading.Thread(target=like, args=(f, m, barrier)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    active = engine.matches.active()
    assert len(active) == len(pairs)
    assert engine.metrics.counts["match.created"] == len(pairs)
    for match in active:
        a, b = match.users
        assert engine.swipes.find_active(a, b).match_id == match.match_id
        assert engine.swipes.find_active(b, a).match_id == match.match_id
        assert engine.user_stats(a)["matches"] == 1
        assert len([t for t in _titles(engine, a) if t.startswith("It's a Match")]) == 1


def test_concurrent_likes_cannot_pass_the_daily_cap(clock):
    targets = [f"f{i}" for i in range(10)]
    profiles = [make_profile("bob", gender="male")] + [make_profile(t) for t in targets]
    engine = MatchingEngine.in_memory(profiles, clock=clock)
    engine.cache_store.atomic_increment(DailyLimits.key("bob", NOW, "likes"), 86_400, amount=99)

    barrier = threading.Barrier(len(targets))
    accepted, rejected = [], []

    def like(target):
        barrier.wait()
        try:
            engine.swipe("bob", target, "like")
            accepted.append(target)
        except LimitExceededError:
            rejected.append(target)

    threads = [threading.Thread(target=like, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(accepted) == 1
    assert len(rejected) == len(targets) - 1
    assert engine.limits.counters("bob").likes == 100
    assert engine.remaining_quota("bob")["likes"] == 0


class ExplodingNotifier:
    def notify(self, user_id, notification):
        raise ConnectionError("push gateway down")


def test_effect_failure_does_not_roll_back(clock, people):
    engine = MatchingEngine.in_memory(people.values(), clock=clock)
    engine.dispatcher.notifier = ExplodingNotifier()

    engine.swipe("alice", "bob", "like")
    outcome = engine.swipe("bob", "alice", "like")

    assert outcome.is_match
    assert engine.matches.get(outcome.match.match_id).is_active
    assert engine.last_dispatch_.failed == 2
    assert engine.metrics.counts["match.created"] == 1


def _fast_retry_engine(clock, people):
    config = MatchingConfig()
    config.elo.retry_backoff_seconds = 0.0
    return MatchingEngine.in_memory(people.values(), config=config, clock=clock)


def test_rating_read_outage_does_not_hide_the_match(clock, people, monkeypatch):
    engine = _fast_retry_engine(clock, people)
    engine.swipe("alice", "bob", "like")

    read_profile = engine.profiles.get_profile
    reads = []

    def flaky_read(user_id):
        reads.append(user_id)
        # the two existence checks succeed, every rating read times out
        if len(reads) > 2:
            raise TransientStoreError("read timeout")
        return read_profile(user_id)

    monkeypatch.setattr(engine.profiles, "get_profile", flaky_read)
    outcome = engine.swipe("bob", "alice", "like")
    monkeypatch.undo()

    assert outcome.is_match and outcome.rating is None
    assert len(engine.matches.active()) == 1
    for user in ("alice", "bob"):
        assert "It's a Match! 🎉" in _titles(engine, user)
        assert "match:new" in _events(engine, user)


def test_rating_read_is_retried(clock, people, monkeypatch):
    engine = _fast_retry_engine(clock, people)
    read_profile = engine.profiles.get_profile
    reads = []

    def read_once_flaky(user_id):
        reads.append(user_id)
        if len(reads) == 3:
            raise TransientStoreError("read timeout")
        return read_profile(user_id)

    monkeypatch.setattr(engine.profiles, "get_profile", read_once_flaky)
    outcome = engine.swipe("alice", "bob", "like")
    monkeypatch.undo()

    assert outcome.rating is not None
    assert engine.profiles.get_profile("alice").rating == 1506


def test_stats_outage_does_not_drop_effects(clock, people, monkeypatch):
    engine = _fast_retry_engine(clock, people)
    engine.swipe("alice", "bob", "like")

    def down(user_id, deltas):
        raise TransientStoreError("stats unavailable")

    monkeypatch.setattr(engine.profiles, "increment_stats", down)
    outcome = engine.swipe("bob", "alice", "like")

    assert outcome.is_match
    assert "It's a Match! 🎉" in _titles(engine, "alice")


def test_pair_keys_with_separator_characters_stay_distinct():
    assert pair_key("a:b", "c") != pair_key("a", "b:c")

    store = InMemoryMatchStore()
    store.create(MatchRecord(users=("a:b", "c"), initiated_by="c", matched_at=NOW))
    store.create(MatchRecord(users=("a", "b:c"), initiated_by="a", matched_at=NOW))
    assert len(store.active()) == 2
