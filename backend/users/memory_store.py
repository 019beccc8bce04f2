"""
User Store Implementation
用户内存存储实现

Thread-safe in-memory storage for user records.
Nothing is persisted; the directory lives as long as the process.

Features:
- Thread-safe operations with Lock
- Monotonic integer ids starting at 1
- Case-insensitive unique emails
- Filtering and sorting for the list endpoint
"""

import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Tuple

SORTABLE_FIELDS = ("id", "name", "email", "age", "created_at")
SORT_ORDERS = ("asc", "desc")


class UserStoreError(Exception):
    """Base class for store failures."""


class UserNotFound(UserStoreError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class DuplicateEmail(UserStoreError):
    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already in use: {email}")


@dataclass
class User:
    """
    User record
    用户记录
    """
    id: int
    name: str
    email: str
    age: Optional[int] = None
    avatar: Optional[str] = None
    linkedin: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class UserStore:
    """
    Thread-safe in-memory user directory
    线程安全的用户目录
    """

    EDITABLE_FIELDS = ("name", "email", "age", "avatar", "linkedin")

    def __init__(self):
        self._users: Dict[int, User] = {}
        self._lock = Lock()
        self._next_id = 1

    def _email_taken(self, email: str, exclude_id: Optional[int] = None) -> bool:
        """Assumes lock held."""
        email = email.lower()
        return any(
            u.email.lower() == email and u.id != exclude_id
            for u in self._users.values()
        )

    def create(self, fields: Dict[str, Any]) -> User:
        """
        Create a user
        创建用户

        Raises:
            DuplicateEmail: another user already has this email
        """
        with self._lock:
            if self._email_taken(fields["email"]):
                raise DuplicateEmail(fields["email"])

            now = time.time()
            user = User(
                id=self._next_id,
                created_at=now,
                updated_at=now,
                **{k: fields.get(k) for k in self.EDITABLE_FIELDS},
            )
            self._users[user.id] = user
            self._next_id += 1
            return user

    def get(self, user_id: int) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            return user

    def update(self, user_id: int, changes: Dict[str, Any]) -> User:
        """
        Apply a partial update. Only keys present in ``changes`` are touched.

        Raises:
            UserNotFound, DuplicateEmail
        """
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise UserNotFound(user_id)
            email = changes.get("email")
            if email is not None and self._email_taken(email, exclude_id=user_id):
                raise DuplicateEmail(email)

            for key, value in changes.items():
                if key in self.EDITABLE_FIELDS:
                    setattr(user, key, value)
            user.updated_at = time.time()
            return user

    def delete(self, user_id: int) -> User:
        with self._lock:
            user = self._users.pop(user_id, None)
            if user is None:
                raise UserNotFound(user_id)
            return user

    def bulk_delete(self, user_ids: Iterable[int]) -> Tuple[List[int], List[int]]:
        """
        Delete several users at once
        批量删除用户

        Returns:
            Tuple of (deleted_ids, missing_ids), each in request order without repeats.
        """
        deleted: List[int] = []
        missing: List[int] = []
        with self._lock:
            for user_id in dict.fromkeys(user_ids):
                if self._users.pop(user_id, None) is None:
                    missing.append(user_id)
                else:
                    deleted.append(user_id)
        return deleted, missing

    def list(
        self,
        name: Optional[str] = None,
        email: Optional[str] = None,
        min_age: Optional[int] = None,
        max_age: Optional[int] = None,
        sort_by: str = "id",
        order: str = "asc",
    ) -> List[User]:
        """
        List users matching every given filter.
        Users without an age never match an age filter and always sort last.
        """
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"sort_by must be one of {', '.join(SORTABLE_FIELDS)}")
        if order not in SORT_ORDERS:
            raise ValueError(f"order must be one of {', '.join(SORT_ORDERS)}")

        with self._lock:
            users = list(self._users.values())

        if name:
            needle = name.lower()
            users = [u for u in users if needle in u.name.lower()]
        if email:
            users = [u for u in users if u.email.lower() == email.lower()]
        if min_age is not None:
            users = [u for u in users if u.age is not None and u.age >= min_age]
        if max_age is not None:
            users = [u for u in users if u.age is not None and u.age <= max_age]

        def sort_key(u: User):
            value = getattr(u, sort_by)
            return value.lower() if isinstance(value, str) else value

        present = [u for u in users if getattr(u, sort_by) is not None]
        absent = [u for u in users if getattr(u, sort_by) is None]
        present.sort(key=sort_key, reverse=(order == "desc"))
        return present + absent

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)
