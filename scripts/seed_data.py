#!/usr/bin/env python3
"""
Seed script — creates a realistic short-video corpus for the feed ranker.

Creates:
  • 12 creators / viewers
  • A follow graph (each user follows 3-5 others)
  • 3 interest groups with overlapping members
  • 8 posts per user (80/20 video/image), spread over the last 45 days
  • Likes and views so the first viewer has a warm context

Run after the database is up:
  python scripts/seed_data.py --api-url http://localhost:8000

Writes straight to TiDB through the ORM models (DB_* settings apply), then
prints curl commands for the running API.
"""
import argparse
import asyncio
import random
import uuid
from datetime import datetime, timedelta, timezone

from feed_ranker import models
from feed_ranker.database import AsyncSessionLocal, dispose_db, init_db

BASE_USERS = [
    "alice_climbs",
    "bob_bakes",
    "carol_codes",
    "dave_dances",
    "eve_edits",
    "frank_films",
    "grace_grows",
    "henry_hikes",
    "iris_inks",
    "jack_juggles",
    "kate_kayaks",
    "leo_lifts",
]

GROUPS = ["outdoors", "kitchen", "studio"]

HASHTAGS = [
    "#climbing", "#sourdough", "#python", "#dance", "#timelapse", "#film",
    "#garden", "#trail", "#ink", "#circus", "#paddle", "#gym", "#diy",
]


def _naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


async def seed(posts_per_user: int, rng: random.Random) -> tuple[list[str], list[str]]:
    await init_db()
    now = datetime.now(timezone.utc)

    user_ids = [str(uuid.uuid4()) for _ in BASE_USERS]
    post_ids: list[str] = []

    async with AsyncSessionLocal() as session:
        # ── Users ─────────────────────────────────────────────────────────
        print("Creating users...")
        for user_id, username in zip(user_ids, BASE_USERS):
            session.add(models.User(user_id=user_id, username=f"{username}_{user_id[:6]}"))
            print(f"  ✓ {username} ({user_id})")
        await session.flush()

        # ── Follow graph ──────────────────────────────────────────────────
        print("\nCreating follow relationships...")
        edges = 0
        for follower_id in user_ids:
            others = [u for u in user_ids if u != follower_id]
            for following_id in rng.sample(others, k=rng.randint(3, 5)):
                session.add(models.Follow(follower_id=follower_id, following_id=following_id))
                edges += 1
        print(f"  ✓ {edges} follow edges")

        # ── Groups ────────────────────────────────────────────────────────
        print("\nCreating group memberships...")
        group_ids = {name: str(uuid.uuid4()) for name in GROUPS}
        for i, user_id in enumerate(user_ids):
            for name in (GROUPS[i % len(GROUPS)], GROUPS[(i + 1) % len(GROUPS)]):
                session.add(models.GroupMember(user_id=user_id, group_id=group_ids[name]))
        print(f"  ✓ {len(user_ids) * 2} memberships across {len(GROUPS)} groups")

        # ── Posts ─────────────────────────────────────────────────────────
        print("\nCreating posts...")
        for author_id in user_ids:
            for _ in range(posts_per_user):
                post_id = str(uuid.uuid4())
                views = rng.randint(20, 5000)
                likes = rng.randint(0, views // 8)
                session.add(
                    models.Post(
                        post_id=post_id,
                        author_id=author_id,
                        media_kind="video" if rng.random() < 0.8 else "image",
                        like_count=likes,
                        comment_count=rng.randint(0, max(1, likes // 5)),
                        view_count=views,
                        hashtags=rng.sample(HASHTAGS, k=rng.randint(1, 3)),
                        created_at=_naive(now - timedelta(hours=rng.uniform(0, 45 * 24))),
                    )
                )
                post_ids.append(post_id)
        await session.flush()
        print(f"  ✓ {len(post_ids)} posts created")

        # ── Likes and views for the first viewer ──────────────────────────
        print("\nAdding likes and views...")
        viewer = user_ids[0]
        others = [p for p in post_ids if p not in post_ids[:posts_per_user]]
        for post_id in rng.sample(others, k=min(15, len(others))):
            session.add(
                models.Like(
                    user_id=viewer,
                    post_id=post_id,
                    created_at=_naive(now - timedelta(hours=rng.uniform(0, 72))),
                )
            )
        for post_id in rng.sample(others, k=min(40, len(others))):
            session.add(
                models.VideoTracking(
                    user_id=viewer,
                    post_id=post_id,
                    interaction_type="view",
                    watch_duration_seconds=rng.uniform(1, 60),
                    completion_percentage=rng.random(),
                    created_at=_naive(now - timedelta(hours=rng.uniform(0, 48))),
                )
            )
        print("  ✓ 15 likes and 40 views")

        await session.commit()

    await dispose_db()
    return user_ids, post_ids


def main(api_url: str, posts_per_user: int, seed_value: int) -> None:
    user_ids, post_ids = asyncio.run(seed(posts_per_user, random.Random(seed_value)))

    # ── Print summary ─────────────────────────────────────────────────────
    u = user_ids[0]
    now = datetime.now(timezone.utc).isoformat()
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    print(f"# Get the feed for user '{BASE_USERS[0]}':")
    print(f"  curl -s -X POST '{api_url}/feed/' \\")
    print(f"    -H 'Content-Type: application/json' \\")
    print(
        f"    -d '{{\"viewer_id\": \"{u}\", \"session_id\": \"demo\", "
        f"\"session_opened_at\": \"{now}\", \"refresh_nonce\": 0}}' | python3 -m json.tool\n"
    )
    print("# Pull to refresh: same body with \"refresh_nonce\": 1, \"force_refresh\": true\n")
    print(f"# Cold start: a viewer with no history")
    print(
        f"    -d '{{\"viewer_id\": \"{uuid.uuid4()}\", \"session_id\": \"demo\", "
        f"\"session_opened_at\": \"{now}\"}}'\n"
    )
    print(f"# Record an interaction:")
    print(f"  curl -s -X POST '{api_url}/feed/interactions' \\")
    print(f"    -H 'Content-Type: application/json' \\")
    print(
        f"    -d '{{\"viewer_id\": \"{u}\", \"post_id\": \"{post_ids[-1]}\", "
        f"\"interaction_type\": \"view\", \"watch_seconds\": 9.5}}'\n"
    )
    print(f"# Check Jaeger traces: http://localhost:16686")
    print(f"# Check Prometheus metrics: {api_url}/metrics")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the Feed Ranker database")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--posts-per-user", type=int, default=8)
    parser.add_argument("--seed", type=int, default=7, help="Random seed for a repeatable corpus")
    args = parser.parse_args()
    main(args.api_url, args.posts_per_user, args.seed)
