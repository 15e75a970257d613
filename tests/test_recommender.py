from dataclasses import replace
from datetime import date, timedelta

import pandas as pd
import pytest

from swipematch import MatchingEngine
from swipematch.data.loader import CANDIDATE_COLUMNS, build_candidate_frame
from swipematch.data.profiles import Preferences, SubscriptionTier
from swipematch.errors import LimitExceededError, NotFoundError, ValidationError

from conftest import NOW, ORIGIN, make_profile, north_of, with_prefs


def _seeker(**overrides):
    base = make_profile("seeker", gender="male", preferences=Preferences(gender_preference=("female",)))
    return replace(base, **overrides)


def _engine(clock, *profiles):
    return MatchingEngine.in_memory(profiles, clock=clock)


def _ids(recs):
    return [r.user_id for r in recs]


def test_filters_self_gender_and_hidden_profiles(clock):
    engine = _engine(
        clock,
        _seeker(),
        make_profile("f1"),
        make_profile("m1", gender="male"),
        make_profile("hidden", preferences=Preferences(show_me=False)),
    )
    assert _ids(engine.recommend("seeker")) == ["f1"]


def test_candidate_must_want_requester_gender(clock):
    engine = _engine(
        clock,
        _seeker(),
        make_profile("open"),
        make_profile("wants_men", preferences=Preferences(gender_preference=("male",))),
        make_profile("wants_women", preferences=Preferences(gender_preference=("female",))),
    )
    assert sorted(_ids(engine.recommend("seeker"))) == ["open", "wants_men"]


def test_empty_gender_preference_means_everyone(clock):
    engine = _engine(
        clock,
        _seeker(preferences=Preferences()),
        make_profile("f1"),
        make_profile("m1", gender="male"),
    )
    assert sorted(_ids(engine.recommend("seeker"))) == ["f1", "m1"]


def test_swiped_and_blocked_users_are_excluded(clock):
    engine = _engine(
        clock,
        _seeker(blocked_users=frozenset({"blocked_by_me"})),
        make_profile("f1"),
        make_profile("swiped"),
        make_profile("blocked_by_me"),
        make_profile("blocks_me", blocked_users=frozenset({"seeker"})),
    )
    engine.swipe("seeker", "swiped", "nope")
    assert _ids(engine.recommend("seeker")) == ["f1"]


def test_distance_bound_and_missing_location(clock):
    engine = _engine(
        clock,
        _seeker(),
        make_profile("near", location=north_of(ORIGIN, 10)),
        make_profile("far", location=north_of(ORIGIN, 60)),
        make_profile("nowhere", location=None),
    )
    recs = engine.recommend("seeker")
    assert _ids(recs) == ["near"]
    assert recs[0].distance_km == pytest.approx(10.0, abs=0.1)


def test_custom_max_distance(clock):
    seeker = with_prefs(_seeker(), max_distance_km=100)
    engine = _engine(clock, seeker, make_profile("far", location=north_of(ORIGIN, 60)))
    assert _ids(engine.recommend("seeker")) == ["far"]


def test_requester_without_location_skips_geo_stage(clock):
    engine = _engine(
        clock,
        _seeker(location=None),
        make_profile("f1", location=north_of(ORIGIN, 500)),
    )
    recs = engine.recommend("seeker")
    assert _ids(recs) == ["f1"]
    assert recs[0].distance_km is None


def test_age_window_is_inclusive_whole_years(clock):
    seeker = with_prefs(_seeker(), age_min=25, age_max=30)
    engine = _engine(
        clock,
        seeker,
        make_profile("thirty", birth_date=date(1996, 1, 1)),
        make_profile("thirty_one", birth_date=date(1995, 1, 1)),
        make_profile("twenty_four", birth_date=date(2002, 1, 1)),
        make_profile("unknown", birth_date=None),
    )
    recs = engine.recommend("seeker")
    assert _ids(recs) == ["thirty"]
    assert recs[0].age == 30


def test_score_formula(clock):
    engine = _engine(
        clock,
        _seeker(rating=1500.0, interests=frozenset({"jazz"})),
        make_profile(
            "f1",
            location=north_of(ORIGIN, 25),
            interests=frozenset({"jazz", "chess"}),
            profile_completeness=1.0,
            activity_score=0.5,
            rating=2000.0,
        ),
    )
    rec = engine.recommend("seeker")[0]
    distance_part = 30 * (1 - rec.distance_km / 50)
    expected = distance_part + 25 * 0.5 + 15 * 1.0 + 15 * 0.5 + 15 * 0.5
    assert rec.score == pytest.approx(expected, abs=0.05)
    assert rec.common_interests == ("jazz",)


def test_boost_doubles_score_and_ranks_first(clock):
    engine = _engine(
        clock,
        _seeker(),
        make_profile("plain"),
        make_profile("boosted", profile_completeness=0.1, activity_score=0.1,
                     boost_expires_at=NOW + timedelta(minutes=30)),
        make_profile("expired", boost_expires_at=NOW - timedelta(minutes=1)),
    )
    recs = engine.recommend("seeker")
    assert recs[0].user_id == "boosted"
    assert recs[0].boosted
    assert not any(r.boosted for r in recs[1:])


def test_ties_keep_nearest_first(clock):
    engine = _engine(
        clock,
        _seeker(),
        make_profile("far_tie", location=north_of(ORIGIN, 20), profile_completeness=1.0),
        make_profile("near_tie", location=north_of(ORIGIN, 5)),
    )
    recs = engine.recommend("seeker")
    assert [r.rank for r in recs] == [1, 2]
    assert recs[0].score >= recs[1].score


def test_limit_truncates_and_validates(clock):
    profiles = [make_profile(f"f{i}", location=north_of(ORIGIN, i)) for i in range(6)]
    engine = _engine(clock, _seeker(), *profiles)
    assert len(engine.recommend("seeker", limit=3)) == 3
    with pytest.raises(ValidationError):
        engine.recommend("seeker", limit=0)


def test_unknown_requester(clock):
    engine = _engine(clock, _seeker())
    with pytest.raises(NotFoundError):
        engine.recommend("ghost")


# ======================================================================
# Premium filters
# ======================================================================

def test_premium_height_and_language_filters(clock):
    seeker = with_prefs(
        _seeker(tier=SubscriptionTier.GOLD),
        height_range=(160, 175),
        languages=("fr",),
    )
    engine = _engine(
        clock,
        seeker,
        make_profile("fits", height_cm=170, languages=frozenset({"fr", "en"})),
        make_profile("tall", height_cm=185, languages=frozenset({"fr"})),
        make_profile("no_height", languages=frozenset({"fr"})),
        make_profile("english", height_cm=165, languages=frozenset({"en"})),
    )
    assert _ids(engine.recommend("seeker")) == ["fits"]


def test_free_requester_ignores_premium_filters(clock):
    seeker = with_prefs(_seeker(), height_range=(160, 175))
    engine = _engine(clock, seeker, make_profile("tall", height_cm=190))
    assert _ids(engine.recommend("seeker")) == ["tall"]


def test_premium_filters_run_after_overfetch(clock):
    # Eight candidates score higher than the only one that passes the
    # height filter, so it falls outside the 2 x limit window.
    seeker = with_prefs(_seeker(tier=SubscriptionTier.PLUS), height_range=(150, 160))
    better = [
        make_profile(f"b{i}", height_cm=190, profile_completeness=1.0, activity_score=1.0)
        for i in range(8)
    ]
    short = make_profile("short", height_cm=155, profile_completeness=0.0, activity_score=0.0)
    engine = _engine(clock, seeker, short, *better)
    assert engine.recommend("seeker", limit=2) == []


# ======================================================================
# Caching
# ======================================================================

def test_results_are_cached_until_invalidated(clock):
    engine = _engine(clock, _seeker(), make_profile("f1"))
    first = engine.recommend("seeker")
    engine.profiles.add(make_profile("f2"))

    assert engine.recommend("seeker") == first
    assert engine.cache_store.get("recommendations:seeker") is not None

    engine.swipe("seeker", "f1", "like")
    assert _ids(engine.recommend("seeker")) == ["f2"]


def test_cached_entry_does_not_serve_larger_limit(clock):
    engine = _engine(clock, _seeker(), make_profile("f1"))
    engine.recommend("seeker", limit=1)
    engine.profiles.add(make_profile("f2"))
    assert sorted(_ids(engine.recommend("seeker", limit=5))) == ["f1", "f2"]


def test_cache_expires(clock):
    engine = _engine(clock, _seeker(), make_profile("f1"))
    engine.recommend("seeker")
    engine.profiles.add(make_profile("f2"))
    clock.advance(seconds=1801)
    assert sorted(_ids(engine.recommend("seeker"))) == ["f1", "f2"]


# ======================================================================
# Top picks
# ======================================================================

def _pick(user_id, **overrides):
    data = {"rating": 1800.0, "profile_completeness": 0.95, "photo_verified": True}
    data.update(overrides)
    return make_profile(user_id, **data)


def test_top_picks_gated_by_tier(clock):
    engine = _engine(clock, _seeker(), _pick("star"))
    with pytest.raises(LimitExceededError):
        engine.top_picks("seeker")


def test_top_picks_filters_quality(clock):
    engine = _engine(
        clock,
        _seeker(tier=SubscriptionTier.GOLD),
        _pick("star"),
        _pick("low_rating", rating=1600.0),
        _pick("incomplete", profile_completeness=0.5),
        _pick("unverified", photo_verified=False),
    )
    assert _ids(engine.top_picks("seeker")) == ["star"]
    assert engine.cache_store.get("top-picks:seeker") is not None


def test_gold_top_picks_capped(clock):
    picks = [_pick(f"star{i}", location=north_of(ORIGIN, i)) for i in range(12)]
    engine = _engine(clock, _seeker(tier=SubscriptionTier.GOLD), *picks)
    assert len(engine.top_picks("seeker", limit=50)) == 10

    platinum = _engine(clock, _seeker(tier=SubscriptionTier.PLATINUM), *picks)
    assert len(platinum.top_picks("seeker", limit=50)) == 12


# ======================================================================
# Candidate frame
# ======================================================================

def test_candidate_frame_shape():
    frame = build_candidate_frame(
        [make_profile("a", location=None), make_profile("b", birth_date=None)], NOW
    )
    assert list(frame.columns) == CANDIDATE_COLUMNS
    assert frame.loc[0, "age"] == 30
    assert pd.isna(frame.loc[0, "lon"])
    assert pd.isna(frame.loc[1, "age"])


def test_no_candidates(clock):
    engine = _engine(clock, _seeker())
    assert engine.recommend("seeker") == []
