"""
Business logic for user accounts
"""
from typing import List
import structlog

from bookstore.errors import (
    DuplicateError,
    InvalidCredentialsError,
    UserNotFoundError,
)
from bookstore.models import User, UserRegistrationRequest, UserUpdateRequest
from bookstore.passwords import hash_password, verify_password
from bookstore.repositories import UserRepository


class UserService:
    """
    Manages user accounts: registration with username/email uniqueness,
    updates, deletion and credential checks. Passwords are hashed before
    they reach the store. The purchase history is not writable from here.
    """

    def __init__(self, repository: UserRepository):
        self.repo = repository
        self.logger = structlog.get_logger().bind(component="user_service")

    def create_user(self, request: UserRegistrationRequest) -> User:
        """
        Register a new user.

        Raises:
            DuplicateError: if the username or email is already in use
        """
        if self.repo.exists_by_username(request.username):
            self.logger.warning("Username already exists", username=request.username)
            raise DuplicateError("username", request.username)
        if self.repo.exists_by_email(request.email):
            self.logger.warning("Email already exists", email=request.email)
            raise DuplicateError("email", request.email)

        user = User(
            username=request.username,
            email=request.email,
            password_hash=hash_password(request.password),
            first_name=request.first_name,
            last_name=request.last_name,
            role=request.role,
        )
        return self.repo.insert(user)

    def get_user(self, user_id: str) -> User:
        user = self.repo.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def list_users(self) -> List[User]:
        return self.repo.list_all()

    def update_user(self, user_id: str, request: UserUpdateRequest) -> User:
        """
        Update account details. Uniqueness is checked only for values that
        actually change; the password is re-hashed only when supplied.
        """
        existing = self.get_user(user_id)

        if existing.username != request.username and self.repo.exists_by_username(request.username):
            raise DuplicateError("username", request.username)
        if existing.email != request.email and self.repo.exists_by_email(request.email):
            raise DuplicateError("email", request.email)

        changes = {
            "username": request.username,
            "email": request.email,
            "first_name": request.first_name,
            "last_name": request.last_name,
            "role": request.role,
        }
        if request.password:
            changes["password_hash"] = hash_password(request.password)

        return self.repo.update_profile(existing.model_copy(update=changes))

    def delete_user(self, user_id: str) -> None:
        if not self.repo.delete(user_id):
            raise UserNotFoundError(user_id)

    def authenticate(self, username: str, password: str) -> User:
        """Return the user if the credentials match"""
        user = self.repo.get_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            self.logger.warning("Authentication failed", username=username)
            raise InvalidCredentialsError()
        self.logger.info("User authenticated", user_id=user.id)
        return user
