from datetime import date

from swipematch import MatchingEngine
from swipematch.config import setup_logging
from swipematch.data.profiles import GeoPoint, Preferences, UserProfile

setup_logging("INFO")

print("Building profiles...")
brooklyn = GeoPoint(lon=-73.9442, lat=40.6782)
profiles = [
    UserProfile(
        user_id="alice",
        gender="female",
        birth_date=date(1994, 5, 2),
        location=brooklyn,
        interests=frozenset({"climbing", "coffee", "jazz"}),
        preferences=Preferences(gender_preference=("male",)),
    ),
    UserProfile(
        user_id="bob",
        gender="male",
        birth_date=date(1992, 11, 20),
        location=GeoPoint(lon=-73.9857, lat=40.7484),
        interests=frozenset({"coffee", "jazz", "chess"}),
        preferences=Preferences(gender_preference=("female",)),
    ),
]

engine = MatchingEngine.in_memory(profiles)

print("Recommendations for alice:")
for rec in engine.recommend("alice"):
    print(rec.to_dict())

print("Swiping...")
engine.swipe("alice", "bob", "like")
outcome = engine.swipe("bob", "alice", "superlike")
print(outcome.to_dict())

match_id = outcome.match.match_id
engine.record_message(match_id, "alice")
engine.record_message(match_id, "bob")
print(engine.get_match(match_id, "alice"))
print(engine.user_stats("bob"))
