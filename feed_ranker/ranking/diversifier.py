"""
Author diversification of a ranked pool into one page.
"""
import logging
from collections import Counter
from typing import Callable, Iterable, NamedTuple, Sequence, TypeVar

from feed_ranker.ranking.types import Candidate, Post

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Selection(NamedTuple):
    items: list
    relaxed: bool  # the per-author cap had to be loosened to fill the page


def by_final_score(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Final score descending, post id ascending on ties."""
    return sorted(candidates, key=lambda c: (-c.scores.final, c.post.id))


class Diversifier:
    def __init__(self, max_per_author: int = 2, relaxation: int = 1) -> None:
        self.max_per_author = max_per_author
        self.relaxation = relaxation

    def diversify(
        self,
        candidates: Sequence[Candidate],
        page_size: int,
        demote: Iterable[str] = (),
    ) -> Selection:
        return self.select(by_final_score(candidates), page_size, lambda c: c.post, demote)

    def select(
        self,
        ordered: Sequence[T],
        page_size: int,
        post_of: Callable[[T], Post],
        demote: Iterable[str] = (),
    ) -> Selection:
        """
        Greedy pass under the per-author cap, in the given order.

        Demoted ids keep their relative order but go behind everything else,
        so they are only used when the rest of the pool cannot fill the page.
        If the page is still short, one more pass with the cap raised by
        `relaxation` fills the remainder.
        """
        demote = set(demote)
        queue = [x for x in ordered if post_of(x).id not in demote]
        queue += [x for x in ordered if post_of(x).id in demote]

        accepted: list[T] = []
        taken: set[str] = set()
        per_author: Counter[str] = Counter()

        def fill(cap: int) -> int:
            added = 0
            for item in queue:
                if len(accepted) >= page_size:
                    break
                post = post_of(item)
                if post.id in taken or per_author[post.author_id] >= cap:
                    continue
                accepted.append(item)
                taken.add(post.id)
                per_author[post.author_id] += 1
                added += 1
            return added

        fill(self.max_per_author)
        relaxed = False
        if len(accepted) < page_size and self.relaxation > 0:
            relaxed = fill(self.max_per_author + self.relaxation) > 0
            if relaxed:
                logger.info(
                    "Author cap relaxed to %d to fill page (%d/%d)",
                    self.max_per_author + self.relaxation,
                    len(accepted),
                    page_size,
                )
        return Selection(items=accepted, relaxed=relaxed)
