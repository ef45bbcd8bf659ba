import pytest

from match_types import MatchingModel, MenteeProfile, MentorProfile, ModelStatus


def make_mentor(id="m1", **kw) -> MentorProfile:
    data = dict(
        id=id,
        name=f"Mentor {id}",
        role="Engineering Director",
        seniority_band="D1",
        timezone=1,
        languages=["English"],
        industry="Software",
        department="Engineering",
        topics_offered=["leadership", "career growth"],
        bio_text="I lead platform engineering teams and enjoy coaching new managers.",
        mentoring_style="hands-on",
        capacity_remaining=3,
    )
    data.update(kw)
    return MentorProfile(**data)


def make_mentee(id="e1", **kw) -> MenteeProfile:
    data = dict(
        id=id,
        name=f"Mentee {id}",
        role="Software Engineer",
        seniority_band="S2",
        timezone=1,
        languages=["English"],
        industry="Software",
        department="Engineering",
        topics_sought=["leadership", "career growth"],
        goals_text="I want to grow into an engineering manager and coach teams.",
    )
    data.update(kw)
    return MenteeProfile(**data)


def make_model(**kw) -> MatchingModel:
    data = dict(id="model-1", name="Default", status=ModelStatus.ACTIVE)
    data.update(kw)
    return MatchingModel(**data)


class FakeEmbeddingProvider:
    """Deterministic bag-of-words vectors; can be told to fail the first N calls."""

    VOCAB = ["leadership", "career", "growth", "engineering", "manager", "coach", "data", "sales"]

    def __init__(self, fail_times=0, always_fail=False):
        self.calls = 0
        self.batch_sizes = []
        self.fail_times = fail_times
        self.always_fail = always_fail

    def __call__(self, texts):
        self.calls += 1
        self.batch_sizes.append(len(texts))
        if self.always_fail or self.calls <= self.fail_times:
            raise ConnectionError("provider unavailable")
        vectors = []
        for text in texts:
            lowered = text.lower()
            vectors.append([1.0 if w in lowered else 0.0 for w in self.VOCAB] + [0.1])
        return vectors


@pytest.fixture
def model():
    return make_model()

