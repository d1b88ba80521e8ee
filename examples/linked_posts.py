from functools import wraps
import asyncio
import os

from firestore_graph_odm import (
    FirestoreDB,
    attach_dependent,
    create_linked,
    fetch_resolved,
    find_dependents,
    init_firestore_odm,
)
from firestore_graph_odm.models import Comment, Post, User, full_name

GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "demo-project")
EMULATOR_HOST = os.getenv("FIRESTORE_EMULATOR_HOST")


def async_decorator(f):
    """Decorator to allow calling an async function like a sync function"""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


@async_decorator
async def main():
    # 1. Connect (emulator when FIRESTORE_EMULATOR_HOST is set)
    db = FirestoreDB(project_id=GOOGLE_CLOUD_PROJECT, emulator_host=EMULATOR_HOST)
    init_firestore_odm(db, [User, Post, Comment])

    # 2. A user and their first post, linked both ways in one transaction
    user, post = await create_linked(
        db,
        User(email="a@b.com", first_name="A", last_name="B"),
        Post,
        {"slug": "post-1", "title": "T", "body": "B"},
        reference="author",
        back_reference="posts",
    )
    print(f"Created {user.id} -> {post.id}")

    # 3. A comment on the existing post
    await attach_dependent(db, Post, post.id, Comment, {"comment": "Nice!"}, reference="post", back_reference="comments")

    # 4. Read the user back with their posts resolved
    user = await fetch_resolved(User, filters=[User.email == "a@b.com"], populate=["posts"])
    for ref in user.posts:
        print(f"{full_name(user)} wrote {ref.entity.title!r}")

    # 5. Reverse lookup: every post whose author is this user
    for found in await find_dependents(Post, "author", user, populate=False):
        print(f"Post {found.slug} by {found.author.id}")

    await db.close()


main()
