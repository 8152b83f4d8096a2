"""Mood lanes mapped onto catalog discovery filters."""

from __future__ import annotations

from dataclasses import dataclass


POPULAR_MOOD = "popular"


@dataclass(frozen=True)
class MoodDefinition:
    """Describes how a mood translates into a catalog discovery query."""

    key: str
    label: str
    genre_ids: tuple[int, ...]
    sort_by: str = "vote_average.desc"
    min_vote_count: int = 100
    original_language: str | None = None

    def discover_params(self) -> dict[str, str | int]:
        params: dict[str, str | int] = {
            "with_genres": ",".join(str(genre_id) for genre_id in self.genre_ids),
            "sort_by": self.sort_by,
            "vote_count.gte": self.min_vote_count,
        }
        if self.original_language:
            params["with_original_language"] = self.original_language
        return params

    def to_payload(self) -> dict[str, object]:
        return {"key": self.key, "label": self.label, "genreIds": list(self.genre_ids)}


MOODS: tuple[MoodDefinition, ...] = (
    MoodDefinition(
        key="sad",
        label="Sad",
        genre_ids=(18,),
        min_vote_count=20,
        original_language="en",
    ),
    MoodDefinition(
        key="disturbing",
        label="Disturbing",
        genre_ids=(27, 53),
        min_vote_count=20,
        original_language="en",
    ),
    MoodDefinition(key="excited", label="Excited", genre_ids=(28,)),
    MoodDefinition(key="happy", label="Happy", genre_ids=(35,)),
    MoodDefinition(key="scared", label="Scared", genre_ids=(27,)),
    MoodDefinition(key="romantic", label="Romantic", genre_ids=(10749,)),
    MoodDefinition(key="curious", label="Curious", genre_ids=(878,)),
    MoodDefinition(key="nostalgic", label="Nostalgic", genre_ids=(16,)),
    MoodDefinition(key="thoughtful", label="Thoughtful", genre_ids=(18,)),
    MoodDefinition(key="adventurous", label="Adventurous", genre_ids=(12,)),
    MoodDefinition(key="mysterious", label="Mysterious", genre_ids=(9648,)),
    MoodDefinition(key="thrilled", label="Thrilled", genre_ids=(53,)),
)

MOOD_KEYS: tuple[str, ...] = (POPULAR_MOOD,) + tuple(mood.key for mood in MOODS)


def get_mood(key: str) -> MoodDefinition | None:
    """Return the mood definition for ``key`` (case-insensitive)."""

    normalized = (key or "").strip().lower()
    for mood in MOODS:
        if mood.key == normalized:
            return mood
    return None
