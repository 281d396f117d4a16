#!/usr/bin/env python3
"""Recompute stored blog post analytics from the raw engagement log."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from app.core.database import SessionLocal
from app.models.models import BlogPost
from app.services.post_analytics import recompute_post_analytics

logger = logging.getLogger("rebuild_post_analytics")


def _target_post_ids(db, requested: list[int]) -> list[int]:
    query = db.query(BlogPost.id).filter(BlogPost.deleted_at.is_(None))
    if requested:
        query = query.filter(BlogPost.id.in_(requested))
    return [int(row.id) for row in query.order_by(BlogPost.id.asc()).all()]


def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild per-post analytics rows.")
    parser.add_argument(
        "--post-id",
        dest="post_ids",
        type=int,
        action="append",
        default=[],
        help="Post id to rebuild (repeatable). Defaults to every live post.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log each post as it is rebuilt.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    db = SessionLocal()
    rebuilt: list[int] = []
    failed: dict[int, str] = {}
    try:
        post_ids = _target_post_ids(db, list(args.post_ids or []))
        for post_id in post_ids:
            try:
                metrics = recompute_post_analytics(db, post_id)
            except SQLAlchemyError as exc:
                logger.error("Failed to rebuild analytics for post %s: %s", post_id, exc)
                failed[post_id] = str(exc)
                continue
            rebuilt.append(post_id)
            logger.debug(
                "Rebuilt post %s: views=%s score=%s",
                post_id,
                metrics.get("total_views"),
                metrics.get("engagement_score"),
            )
    finally:
        db.close()

    missing = sorted(set(args.post_ids or []) - set(rebuilt) - set(failed))
    print(
        json.dumps(
            {
                "status": "failed" if failed else "rebuilt",
                "rebuilt": rebuilt,
                "failed": failed,
                "missing": missing,
            }
        )
    )
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
