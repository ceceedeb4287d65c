from typing import Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import AlreadyExistsError, ValidationError, WeakPasswordError
from app.core.password_policy import PasswordPolicy, validate_password
from app.core.security import get_password_hash, verify_password
from app.core.timeutils import utcnow
from app.models import User
from app.models.user import USER_ROLES


class UserService:
    """Credential store access for the auth flows."""

    @staticmethod
    def get_by_id(db: Session, user_id: UUID) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()

    @staticmethod
    def get_by_identifier(db: Session, identifier: str) -> Optional[User]:
        """Look up a user by email or username, case-insensitively."""
        value = identifier.strip().lower()
        return db.query(User).filter(
            or_(func.lower(User.email) == value, func.lower(User.username) == value)
        ).first()

    @staticmethod
    def personal_info(user: User) -> dict[str, Optional[str]]:
        return {
            "username": user.username,
            "display_name": user.display_name,
            "email": user.email,
        }

    @staticmethod
    def ensure_available(db: Session, username: str, email: str) -> None:
        if db.query(User).filter(func.lower(User.username) == username.lower()).first():
            raise AlreadyExistsError("User", detail="Username is already taken")
        if db.query(User).filter(func.lower(User.email) == email.lower()).first():
            raise AlreadyExistsError("User", detail="Email is already registered")

    @staticmethod
    def create_user(
        db: Session,
        username: str,
        display_name: str,
        email: str,
        password: str,
        role: str = "customer",
        policy: Optional[PasswordPolicy] = None,
    ) -> User:
        """Validate the password, check uniqueness and create the user."""
        result = validate_password(
            password,
            {"username": username, "display_name": display_name, "email": email},
            policy or PasswordPolicy.default(),
        )
        if not result.is_valid:
            raise WeakPasswordError(result.messages)

        UserService.ensure_available(db, username, email)

        user = User(
            username=username,
            display_name=display_name,
            email=email.lower(),
            password_hash=get_password_hash(password),
            password_updated_at=utcnow(),
            password_history=[],
            role=role,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def check_password(user: User, password: str) -> bool:
        if not user.password_hash or not password:
            return False
        return verify_password(password, user.password_hash)

    @staticmethod
    def set_password(user: User, new_password: str) -> None:
        """
        Validate and store a new password for an existing user.

        Rejects passwords that fail the policy or match the current or a
        recent password. Does not commit.
        """
        result = validate_password(new_password, UserService.personal_info(user), PasswordPolicy.default())
        if not result.is_valid:
            raise WeakPasswordError(result.messages)

        previous = [h for h in [user.password_hash, *(user.password_history or [])] if h]
        if any(verify_password(new_password, old_hash) for old_hash in previous):
            raise WeakPasswordError(["Password has been used recently. Please choose a different password"])

        user.password_history = previous[: settings.PASSWORD_HISTORY_SIZE]
        user.password_hash = get_password_hash(new_password)
        user.password_updated_at = utcnow()

    @staticmethod
    def bump_token_version(user: User) -> int:
        """Invalidate every token issued to ``user`` so far. Does not commit."""
        user.token_version = (user.token_version or 0) + 1
        return user.token_version

    @staticmethod
    def is_username_available(db: Session, username: str) -> bool:
        return db.query(User).filter(func.lower(User.username) == username.strip().lower()).first() is None

    @staticmethod
    def is_email_available(db: Session, email: str) -> bool:
        return UserService.get_by_email(db, email) is None

    @staticmethod
    def update_profile(db: Session, user: User, display_name: Optional[str] = None) -> User:
        if display_name is not None:
            user.display_name = display_name
        db.commit()
        db.refresh(user)
        return user

    @staticmethod
    def list_users(db: Session, skip: int = 0, limit: int = 50) -> tuple[list[User], int]:
        query = db.query(User)
        total = query.count()
        users = query.order_by(User.created_at.asc()).offset(skip).limit(limit).all()
        return users, total

    @staticmethod
    def set_role(db: Session, user: User, role: str) -> User:
        """Change a user's role. Tokens carry the role, so existing ones are invalidated."""
        if role not in USER_ROLES:
            raise ValidationError(f"Unknown role '{role}'")
        if user.role != role:
            user.role = role
            UserService.bump_token_version(user)
            db.commit()
            db.refresh(user)
        return user
