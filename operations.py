"""
Business logic for the gallery: accounts, content, comments, likes, payment
review and analytics. Every mutation is persisted through the record store
and then announced on the broadcaster.
"""
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Dict, Iterable, List, Optional, Tuple

import pydantic

import realtime
from database import RecordStore
from errors import AuthError, ConflictError, InvalidStateError, NotFoundError, StorageError, ValidationError
from media import MediaStore
from schemas import AdminPayment, Analytics, Comment, ContentItem, ContentStats, LoginResult, Payment, User
from security import create_access_token, decode_access_token, hash_password, verify_password
from settings import Settings

logger = logging.getLogger("gallery.operations")

UNKNOWN_AUTHOR = "User"
UNKNOWN_USER = "Unknown"
MOST_LIKED_LIMIT = 5


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id(taken: Iterable[str]) -> str:
    """Epoch milliseconds as a string, bumped until it is not in ``taken``."""
    taken = set(taken)
    candidate = int(time.time() * 1000)
    while str(candidate) in taken:
        candidate += 1
    return str(candidate)


def dump(model) -> dict:
    return model.model_dump(by_alias=True)


def parse_records(model, records: List[dict], collection: str) -> list:
    """Validate stored records; a record that does not fit its schema is a storage fault."""
    try:
        return [model.model_validate(r) for r in records]
    except pydantic.ValidationError:
        logger.error("Malformed record in %s", collection, exc_info=True)
        raise StorageError(f"Malformed {collection} data")


def parse_record(model, record: dict, collection: str):
    return parse_records(model, [record], collection)[0]


def _find(records: List[dict], record_id: str) -> int:
    for index, record in enumerate(records):
        if record.get("id") == record_id:
            return index
    return -1


class GalleryService:
    def __init__(
        self,
        settings: Settings,
        records: RecordStore,
        media: MediaStore,
        proofs: MediaStore,
        broadcaster,
    ):
        self.settings = settings
        self.records = records
        self.media = media
        self.proofs = proofs
        self.broadcaster = broadcaster

    # Accounts

    def _users(self) -> List[User]:
        return parse_records(User, self.records.read("users"), "users")

    def find_user(self, username: str) -> Optional[User]:
        for user in self._users():
            if user.username == username:
                return user
        return None

    def ensure_admin(self) -> Optional[User]:
        """Create the configured admin account if it does not exist yet."""
        s = self.settings
        if not s.admin_password:
            return None
        with self.records.transaction("users") as users:
            for u in users:
                if u.get("username") == s.admin_username:
                    existing = parse_record(User, u, "users")
                    if existing.role != "admin":
                        logger.warning("User %r exists without admin role; admin not created", s.admin_username)
                    return existing
            admin = User(
                username=s.admin_username,
                password_hash=hash_password(s.admin_password),
                firstname=s.admin_firstname,
                phone="",
                role="admin",
            )
            users.append(dump(admin))
        logger.info("Created admin account %r", admin.username)
        return admin

    def login(self, username: str, password: str) -> LoginResult:
        if not username or not password:
            raise AuthError()
        user = self.find_user(username)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Failed login for %r", username)
            raise AuthError()
        token = create_access_token(
            {"sub": user.username, "role": user.role},
            self.settings.secret_key,
            timedelta(minutes=self.settings.access_token_expire_minutes),
        )
        return LoginResult(
            username=user.username,
            firstname=user.firstname,
            is_admin=user.role == "admin",
            token=token,
        )

    def register(self, username: str, password: str, firstname: str, phone: str) -> User:
        if not username or not password or not firstname or not phone:
            raise ValidationError("All fields are required")
        user = User(
            username=username,
            password_hash=hash_password(password),
            firstname=firstname,
            phone=phone,
        )
        with self.records.transaction("users") as users:
            if any(u.get("username") == username for u in users):
                raise ConflictError("Username already taken")
            users.append(dump(user))
        logger.info("Registered user %r", username)
        return user

    def current_user(self, token: str) -> User:
        payload = decode_access_token(token, self.settings.secret_key)
        user = self.find_user(payload["sub"])
        if user is None:
            raise AuthError("Could not validate credentials")
        return user

    # Content

    def list_content(self) -> List[ContentItem]:
        return parse_records(ContentItem, self.records.read("content"), "content")

    def get_content(self, item_id: str) -> ContentItem:
        for item in self.list_content():
            if item.id == item_id:
                return item
        raise NotFoundError("Item not found")

    def get_comments(self, item_id: str) -> List[Comment]:
        return self.get_content(item_id).comments

    def create_content(
        self,
        title: str,
        project_title: str,
        content_type: str,
        description: str,
        media: Optional[BinaryIO],
        original_filename: Optional[str] = None,
    ) -> ContentItem:
        if media is None:
            raise ValidationError("A media file is required")
        filename = self.media.store(media, original_filename)
        try:
            with self.records.transaction("content") as items:
                item = ContentItem(
                    id=new_id(i.get("id") for i in items),
                    title=title or "",
                    project_title=project_title or "",
                    type=content_type or "",
                    filename=filename,
                    description=description or "",
                    upload_date=now_iso(),
                )
                items.insert(0, dump(item))
                snapshot = list(items)
        except Exception:
            self.media.delete(filename)
            raise
        logger.info("Created content %s (%s)", item.id, filename)
        self.broadcaster.publish(realtime.CONTENT_UPDATED, snapshot)
        return item

    def delete_content(self, item_id: str) -> None:
        with self.records.transaction("content") as items:
            index = _find(items, item_id)
            if index == -1:
                raise NotFoundError("Item not found")
            removed = items.pop(index)
            snapshot = list(items)
        if not self.media.delete(removed.get("filename", "")):
            logger.warning("Media file for content %s was already gone", item_id)
        logger.info("Deleted content %s", item_id)
        self.broadcaster.publish(realtime.CONTENT_UPDATED, snapshot)

    def add_comment(self, item_id: str, username: str, text: str) -> Comment:
        if not text or not text.strip():
            raise ValidationError("Comment text is required")
        author = self.find_user(username) if username else None
        with self.records.transaction("content") as items:
            index = _find(items, item_id)
            if index == -1:
                raise NotFoundError("Item not found")
            item = parse_record(ContentItem, items[index], "content")
            comment = Comment(
                id=new_id(c.id for c in item.comments),
                author_username=username,
                author_first_name=author.firstname if author else UNKNOWN_AUTHOR,
                text=text,
                date=now_iso(),
            )
            item.comments.insert(0, comment)
            items[index] = dump(item)
        self.broadcaster.publish(realtime.COMMENT_ADDED, {"itemId": item_id, "comment": dump(comment)})
        return comment

    def toggle_like(self, item_id: str, username: str) -> Tuple[int, bool]:
        """Add or remove ``username`` from the item's likes; returns (likes, now_liked)."""
        if not username:
            raise ValidationError("Username is required")
        with self.records.transaction("content") as items:
            index = _find(items, item_id)
            if index == -1:
                raise NotFoundError("Item not found")
            item = parse_record(ContentItem, items[index], "content")
            liked = username not in item.liked_by
            if liked:
                item.liked_by.append(username)
            else:
                item.liked_by.remove(username)
            item.likes = len(item.liked_by)
            items[index] = dump(item)
        self.broadcaster.publish(
            realtime.LIKE_UPDATED,
            {"itemId": item_id, "likes": item.likes, "likedBy": list(item.liked_by)},
        )
        return item.likes, liked

    # Payments

    def list_payments(self) -> List[Payment]:
        return parse_records(Payment, self.records.read("payments"), "payments")

    def submit_payment(self, username: str, proof: Optional[BinaryIO], original_filename: Optional[str] = None) -> Payment:
        if not username:
            raise ValidationError("Username is required")
        if proof is None:
            raise ValidationError("A payment proof file is required")
        filename = self.proofs.store(proof, original_filename)
        try:
            with self.records.transaction("payments") as payments:
                payment = Payment(
                    id=new_id(p.get("id") for p in payments),
                    username=username,
                    proof_filename=filename,
                    status="pending",
                    date=now_iso(),
                )
                payments.insert(0, dump(payment))
        except Exception:
            self.proofs.delete(filename)
            raise
        logger.info("Payment %s submitted by %r", payment.id, username)
        self.broadcaster.publish(realtime.PAYMENT_ADDED, dump(payment))
        return payment

    def check_payment_status(self, username: str) -> Dict[str, object]:
        # payments are prepended, so the first match is the latest submission
        for payment in self.list_payments():
            if payment.username == username:
                return {"verified": payment.status == "approved", "payment": payment}
        return {"verified": False}

    def list_payments_for_admin(self) -> List[AdminPayment]:
        users = {u.username: u for u in self._users()}
        enriched = []
        for payment in self.list_payments():
            user = users.get(payment.username)
            enriched.append(
                AdminPayment(
                    **payment.model_dump(),
                    user_first_name=user.firstname if user else UNKNOWN_USER,
                    user_phone=user.phone if user else UNKNOWN_USER,
                )
            )
        return enriched

    def _pending_payment(self, payments: List[dict], payment_id: str) -> Tuple[int, Payment]:
        index = _find(payments, payment_id)
        if index == -1:
            raise NotFoundError("Payment not found")
        payment = parse_record(Payment, payments[index], "payments")
        if payment.status != "pending":
            raise InvalidStateError(f"Payment already {payment.status}")
        return index, payment

    def approve_payment(self, payment_id: str) -> Payment:
        with self.records.transaction("payments") as payments:
            index, payment = self._pending_payment(payments, payment_id)
            payment.status = "approved"
            # approved payments leave the queue entirely
            payments.pop(index)
        self.proofs.delete(payment.proof_filename)
        logger.info("Approved payment %s for %r", payment_id, payment.username)
        self.broadcaster.publish(realtime.PAYMENT_APPROVED, {"paymentId": payment_id, "username": payment.username})
        return payment

    def reject_payment(self, payment_id: str) -> Payment:
        with self.records.transaction("payments") as payments:
            index, payment = self._pending_payment(payments, payment_id)
            payment.status = "rejected"
            payments[index] = dump(payment)
        self.proofs.delete(payment.proof_filename)
        logger.info("Rejected payment %s for %r", payment_id, payment.username)
        self.broadcaster.publish(realtime.PAYMENT_REJECTED, {"paymentId": payment_id})
        return payment

    # Analytics

    def analytics(self) -> Analytics:
        items = self.list_content()
        payments = self.list_payments()
        # sorted() is stable, so equal like counts keep their stored order
        most_liked = sorted(items, key=lambda i: i.likes, reverse=True)[:MOST_LIKED_LIMIT]
        return Analytics(
            most_liked=most_liked,
            stats=ContentStats(
                total_artworks=len(items),
                total_likes=sum(i.likes for i in items),
                total_comments=sum(len(i.comments) for i in items),
                pending_payments=sum(1 for p in payments if p.status == "pending"),
            ),
        )
