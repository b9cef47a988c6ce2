"""
Record Schemas for the Gallery Share platform

Each collection is a JSON file on disk holding one named array of records.
Field names are snake_case in Python and camelCase on disk and on the wire
(ContentItem.project_title <-> "projectTitle").

We will use these collections:
- users: registered accounts (users.json -> {"users": [...]})
- content: uploaded items with embedded comments (content.json -> {"items": [...]})
- payments: payment proofs awaiting review (payments.json -> {"payments": [...]})
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
PaymentStatus = Literal["pending", "approved", "rejected"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    username: str = Field(..., min_length=1)
    password_hash: str = Field(..., description="BCrypt hash of password")
    firstname: str
    phone: str
    role: Role = Field("user")


class Comment(CamelModel):
    id: str
    author_username: str
    author_first_name: str = Field(..., description="Commenter's name when the comment was made")
    text: str
    date: str


class ContentItem(CamelModel):
    id: str
    title: str = ""
    project_title: str = ""
    type: str = ""
    filename: str = Field(..., description="Name of the media file in the uploads directory")
    description: str = ""
    upload_date: str
    likes: int = 0
    comments: List[Comment] = Field(default_factory=list, description="Newest first")
    liked_by: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def sync_likes(self):
        # likedBy is a set of usernames; likes is always its size
        self.liked_by = list(dict.fromkeys(self.liked_by))
        self.likes = len(self.liked_by)
        return self


class Payment(CamelModel):
    id: str
    username: str
    proof_filename: str = Field(..., description="Name of the proof file in the payments directory")
    status: PaymentStatus = "pending"
    date: str


class AdminPayment(Payment):
    user_first_name: str = "Unknown"
    user_phone: str = "Unknown"


class ContentStats(CamelModel):
    total_artworks: int
    total_likes: int
    total_comments: int
    pending_payments: int


class Analytics(CamelModel):
    most_liked: List[ContentItem]
    stats: ContentStats


# Request bodies. Missing fields default to "" so the operations decide what is required.
class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class RegisterRequest(BaseModel):
    username: str = ""
    password: str = ""
    firstname: str = ""
    phone: str = ""


class CommentRequest(BaseModel):
    username: str = ""
    text: str = ""


class LikeRequest(BaseModel):
    username: str = ""


class LoginResult(CamelModel):
    success: bool = True
    username: str
    firstname: str
    is_admin: bool
    token: Optional[str] = None
