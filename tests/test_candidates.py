"""
Tests for candidate generation.
"""
import pytest

from feed_ranker.ranking.candidates import CandidateSource, merge_unique, split_quota
from feed_ranker.ranking.types import MediaKind
from tests.factories import NOW, make_post, uid


@pytest.fixture
def source(repo, config) -> CandidateSource:
    return CandidateSource(repo, config, clock=lambda: NOW)


@pytest.mark.parametrize(
    "total, expected",
    [(120, (96, 24)), (10, (8, 2)), (1, (1, 0)), (0, (0, 0))],
)
def test_split_quota_rounds_in_favour_of_videos(total, expected):
    assert split_quota(total, 0.8) == expected


def test_merge_unique_keeps_first_occurrence():
    a = make_post("a", "x")
    b = make_post("b", "y")
    own = make_post("own", "viewer")
    merged = merge_unique([[a, own], [b, a]], uid("viewer"), excluded={uid("nope")})
    assert merged == [a, b]


async def test_skips_own_and_excluded_posts(repo, source):
    repo.add_post(make_post("mine", "viewer"))
    repo.add_post(make_post("seen", "creator"))
    keep = repo.add_post(make_post("fresh", "creator"))

    pool = await source.candidates(uid("viewer"), excluded={uid("seen")})

    assert [p.id for p in pool] == [keep.id]


async def test_buckets_are_ordered_videos_images_viral(repo, source):
    repo.add_posts(
        [
            make_post("v-old", "a", hours_old=48),
            make_post("v-new", "b", hours_old=2),
            make_post("i-low", "c", kind=MediaKind.IMAGE, likes=3),
            make_post("i-high", "d", kind=MediaKind.IMAGE, likes=30),
            make_post("viral", "e", hours_old=24 * 45, likes=500),
        ]
    )

    pool = await source.candidates(uid("viewer"))

    assert [p.id for p in pool] == [
        uid("v-new"),
        uid("v-old"),
        uid("i-high"),
        uid("i-low"),
        uid("viral"),
    ]


async def test_viral_bucket_requires_likes_and_video(repo, source):
    repo.add_posts(
        [
            make_post("viral", "a", hours_old=24 * 40, likes=10),
            make_post("quiet", "b", hours_old=24 * 40, likes=9),
            make_post("old-image", "c", hours_old=24 * 40, likes=900, kind=MediaKind.IMAGE),
        ]
    )

    pool = await source.candidates(uid("viewer"))

    assert [p.id for p in pool] == [uid("viral")]


async def test_failed_bucket_does_not_sink_the_pool(repo, source):
    repo.add_post(make_post("video", "a"))
    repo.add_post(make_post("image", "b", kind=MediaKind.IMAGE))
    repo.failing.add("candidates_recent:image")

    pool = await source.candidates(uid("viewer"))

    assert [p.id for p in pool] == [uid("video")]


async def test_quota_scales_with_page_size(repo, config):
    repo.add_posts(make_post(f"v{i}", f"a{i}", hours_old=i + 1) for i in range(100))
    source = CandidateSource(repo, config, clock=lambda: NOW)

    pool = await source.candidates(uid("viewer"), page_size=5)

    # 5 × 10 = 50 candidates, 40 of them from the video bucket
    assert len(pool) == 40
