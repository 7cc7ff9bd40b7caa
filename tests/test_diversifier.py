"""
Tests for the author diversifier.
"""
from collections import Counter

from feed_ranker.ranking.diversifier import Diversifier, by_final_score
from feed_ranker.ranking.types import Candidate, Scores
from tests.factories import make_post, uid


def candidate(name: str, author: str, final: float) -> Candidate:
    return Candidate(
        post=make_post(name, author),
        scores=Scores(relevance=0, engagement=0, freshness=0, diversity_penalty=0, final=final),
    )


def authors(selection) -> Counter:
    return Counter(c.post.author_id for c in selection.items)


def test_orders_by_final_score_then_id():
    pool = [candidate("b", "x", 0.5), candidate("a", "y", 0.5), candidate("c", "z", 0.9)]
    ordered = by_final_score(pool)
    assert ordered[0].post.id == uid("c")
    assert [c.post.id for c in ordered[1:]] == sorted([uid("a"), uid("b")])


def test_caps_posts_per_author():
    pool = [candidate(f"a{i}", "prolific", 1.0 - i / 100) for i in range(10)]
    pool += [candidate(f"o{i}", f"other{i}", 0.5 - i / 100) for i in range(10)]

    selection = Diversifier().diversify(pool, 6)

    assert len(selection.items) == 6
    assert authors(selection)[uid("prolific")] == 2
    assert not selection.relaxed


def test_skipped_author_posts_do_not_block_lower_ranked_ones():
    pool = [
        candidate("a1", "a", 0.9),
        candidate("a2", "a", 0.8),
        candidate("a3", "a", 0.7),
        candidate("b1", "b", 0.1),
    ]
    selection = Diversifier(relaxation=0).diversify(pool, 3)
    assert [c.post.id for c in selection.items] == [uid("a1"), uid("a2"), uid("b1")]


def test_relaxes_cap_once_when_pool_is_dominated():
    pool = [candidate(f"a{i}", "a", 1.0 - i / 100) for i in range(20)]
    pool += [candidate(f"o{i}", f"o{i}", 0.2) for i in range(3)]

    selection = Diversifier().diversify(pool, 10)

    assert selection.relaxed
    # cap 2 gives 5 posts, the relaxed cap 3 adds one more by "a"
    assert len(selection.items) == 6
    assert authors(selection)[uid("a")] == 3


def test_short_pool_returns_everything_eligible():
    pool = [candidate("x", "x", 0.3), candidate("y", "y", 0.2)]
    selection = Diversifier().diversify(pool, 12)
    assert len(selection.items) == 2
    assert not selection.relaxed


def test_demoted_posts_only_fill_the_tail():
    pool = [candidate(f"p{i}", f"author{i}", 1.0 - i / 10) for i in range(6)]
    demote = {uid("p0"), uid("p1")}

    selection = Diversifier().diversify(pool, 5, demote=demote)

    ids = [c.post.id for c in selection.items]
    assert ids[:4] == [uid("p2"), uid("p3"), uid("p4"), uid("p5")]
    assert ids[4] == uid("p0")


def test_no_duplicates_even_with_duplicate_input():
    dup = candidate("same", "a", 0.9)
    pool = [dup, dup, candidate("other", "b", 0.1)]
    selection = Diversifier().diversify(pool, 5)
    ids = [c.post.id for c in selection.items]
    assert len(ids) == len(set(ids)) == 2
