"""
Seed a database with one user, one post and one comment.

Run with ``firestore-graph-seed`` (or ``python -m firestore_graph_odm.seed``)
after exporting ``DATABASE_URL``, e.g.
``DATABASE_URL=firestore://demo-project?emulator=localhost:8080``.
"""

import asyncio
import logging
from typing import Dict

from .firestore_client import FirestoreDB
from .linked import attach_dependent, create_linked
from .models import Address, Comment, Post, User

logger = logging.getLogger(__name__)


async def seed(db: FirestoreDB) -> Dict[str, str]:
    user = User(
        email="jane.doe@example.com",
        first_name="Jane",
        last_name="Doe",
        address=Address(street="123 Main St", city="Anytown", state="Anystate", zip="12345"),
    )
    user, post = await create_linked(
        db,
        user,
        Post,
        {
            "slug": "my-first-post",
            "title": "My First Post",
            "body": "This is the body of my first post.",
        },
        reference="author",
        back_reference="posts",
    )
    post, comment = await attach_dependent(
        db, Post, post.id, Comment, {"comment": "Great post!"}, reference="post", back_reference="comments"
    )

    return {"user": user.id, "post": post.id, "comment": comment.id}


async def run(db: FirestoreDB) -> Dict[str, str]:
    try:
        ids = await seed(db)
    finally:
        await db.close()
    logger.info("Seeding finished.")
    return ids


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    db = FirestoreDB.from_env()
    asyncio.run(run(db))


if __name__ == "__main__":
    main()
