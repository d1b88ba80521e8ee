"""
Users, posts and comments.

Behaviour the schemas do not need to own (full names, password hashing) lives
in plain functions taking the entity as their first argument.
"""

from datetime import datetime
from typing import List, Optional

from passlib.hash import pbkdf2_sha256

from .firestore_model import BaseFirestoreModel
from .pydantic_compat import BaseModel, Field
from .references import Ref


class Address(BaseModel):
    street: str
    city: str
    state: str
    zip: str


class User(BaseFirestoreModel):
    class Settings:
        name = "users"
        unique = ("email",)
        timestamps = True

    email: str
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    password: Optional[str] = None
    address: Optional[Address] = None
    posts: List[Ref["Post"]] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class Post(BaseFirestoreModel):
    class Settings:
        name = "posts"
        unique = ("slug",)

    slug: str
    title: str
    body: str
    author: Ref[User]
    comments: List[Ref["Comment"]] = Field(default_factory=list)


class Comment(BaseFirestoreModel):
    class Settings:
        name = "comments"

    comment: str
    post: Ref[Post]


User.model_rebuild()
Post.model_rebuild()
Comment.model_rebuild()


def full_name(user: User) -> str:
    return f"{user.first_name or ''} {user.last_name or ''}".strip()


def hash_password(password: str) -> str:
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    return pbkdf2_sha256.verify(password, hashed_password)


def set_password(user: User, password: str) -> User:
    """Store the hash of ``password`` on ``user``. Call before saving."""
    user.password = hash_password(password)
    return user


def is_valid_password(user: User, password: str) -> bool:
    if not user.password:
        return False
    return verify_password(password, user.password)
