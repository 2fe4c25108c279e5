"""
Service layer

商業規則 (存在性、擁有權) 的順序由這裡決定,
資料存取一律交給 repository。呼叫者的身分 (Identity) 由參數明確傳入。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta

import jwt
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException

from errors import (
    TaskManagerError, Unauthorized, InvalidCredentials, MissingIdentity,
    InvalidUser, QueryError, EncodingError,
)
from repository import CreateUserPayload
import logging

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class Identity:
    """已驗證的呼叫者"""
    id: int
    email: str


# ============================================
# Token Service
# ============================================

class AuthService:
    """
    簽發與驗證 identity token

    Token 內容: sub = email, user_id = id, exp = 簽發時間 + ttl。
    簽章的 secret 與演算法來自 create_app() 傳入的設定。
    """

    def __init__(self, users, ttl=TOKEN_TTL):
        self.users = users
        self.ttl = ttl

    def create_token(self, user):
        if not getattr(user, 'email', None) or not getattr(user, 'id', None):
            raise EncodingError("CreateToken: invalid user data provided")

        try:
            return create_access_token(
                identity=user.email,
                additional_claims={'user_id': user.id},
                expires_delta=self.ttl,
            )
        except (jwt.PyJWTError, RuntimeError, TypeError) as e:
            raise EncodingError(f"CreateToken: failed to create token string: {e}") from e

    def verify_token(self, token):
        """
        驗證 token 並回傳 Identity

        簽章、演算法 (只接受 HMAC)、過期時間都由 decode_token 檢查;
        另外還要確認 token 裡的使用者仍然存在
        """
        try:
            claims = decode_token(token)
        except jwt.ExpiredSignatureError as e:
            raise Unauthorized("token has expired") from e
        except (jwt.PyJWTError, JWTExtendedException) as e:
            raise Unauthorized("invalid token") from e

        email = claims.get('sub')
        if not isinstance(email, str) or not email:
            raise Unauthorized("invalid token")

        try:
            user = self.users.get_by_email(email)
        except QueryError as e:
            raise Unauthorized("unable to verify user within the token") from e

        if user is None:
            raise Unauthorized("unable to verify user within the token")

        token_user_id = claims.get('user_id')
        if token_user_id is not None and token_user_id != user.id:
            raise Unauthorized("unable to verify user within the token")

        return Identity(id=user.id, email=user.email)


# ============================================
# User Service
# ============================================

class UserService(ABC):

    @abstractmethod
    def register_user(self, request): ...

    @abstractmethod
    def login_user(self, credentials): ...

    @abstractmethod
    def check_if_email_exists(self, email): ...


class DefaultUserService(UserService):

    def __init__(self, repository, hasher):
        self.r = repository
        self.hasher = hasher

    def register_user(self, request):
        try:
            email_exists = self.r.check_if_email_exists(request.email)
        except QueryError as e:
            raise e.with_prefix("RegisterUser: failed to check if email is unique") from e

        if email_exists:
            raise QueryError("RegisterUser: email already in use")

        try:
            password_hash = self.hasher.generate_password_hash(request.password).decode('utf-8')
        except (ValueError, TypeError) as e:
            raise EncodingError(f"RegisterUser: failed to hash a password: {e}") from e

        payload = CreateUserPayload(
            name=request.name,
            email=request.email,
            password_hash=password_hash,
        )
        try:
            return self.r.create_user(payload)
        except QueryError as e:
            raise e.with_prefix("RegisterUser") from e

    def login_user(self, credentials):
        try:
            user = self.r.get_by_email(credentials.email)
        except QueryError as e:
            raise e.with_prefix("LoginUser") from e

        if user is None:
            raise InvalidCredentials("LoginUser: no entries found")

        if not self._password_matches(user.password_hash, credentials.password):
            raise InvalidCredentials("LoginUser: incorrect credentials")

        return user

    def check_if_email_exists(self, email):
        return self.r.check_if_email_exists(email)

    def _password_matches(self, password_hash, password):
        try:
            return self.hasher.check_password_hash(password_hash, password)
        except (ValueError, TypeError):
            return False


# ============================================
# Task Service
# ============================================

class TaskService(ABC):

    @abstractmethod
    def get_tasks_list(self, user_id): ...

    @abstractmethod
    def store_task(self, identity, payload): ...

    @abstractmethod
    def update_task(self, identity, payload): ...

    @abstractmethod
    def show_task(self, task_id): ...

    @abstractmethod
    def delete_task(self, task_id, user_id): ...

    @abstractmethod
    def is_task_owner(self, user_id, task_id): ...


class DefaultTaskService(TaskService):

    def __init__(self, repository):
        self.r = repository

    def get_tasks_list(self, user_id):
        if user_id is None or user_id < 1:
            raise InvalidUser("GetTasksList: invalid user")

        try:
            return self.r.index(user_id)
        except TaskManagerError as e:
            raise e.with_prefix("GetTasksList: failed to get data") from e

    def store_task(self, identity, payload):
        if identity is None or not identity.id:
            raise MissingIdentity("StoreTask: missing user identity")

        try:
            return self.r.store(identity.id, payload)
        except TaskManagerError as e:
            raise e.with_prefix("StoreTask: error while storing the data") from e

    def update_task(self, identity, payload):
        if identity is None or not identity.id:
            raise MissingIdentity("UpdateTask: missing user identity")

        try:
            return self.r.update(identity.id, payload)
        except TaskManagerError as e:
            raise e.with_prefix("UpdateTask") from e

    def show_task(self, task_id):
        # 擁有權由 controller 比對
        try:
            return self.r.show(task_id)
        except TaskManagerError as e:
            raise e.with_prefix("ShowTask") from e

    def delete_task(self, task_id, user_id):
        try:
            is_owner = self.is_task_owner(user_id, task_id)
        except TaskManagerError as e:
            raise e.with_prefix("DeleteTask") from e

        if not is_owner:
            raise Unauthorized("DeleteTask: you are not authorized to execute this action")

        try:
            self.r.delete(task_id)
        except TaskManagerError as e:
            raise e.with_prefix("DeleteTask") from e

    def is_task_owner(self, user_id, task_id):
        try:
            return self.r.is_task_owner(user_id, task_id)
        except TaskManagerError as e:
            raise e.with_prefix("failed to check if user is a task owner") from e


@dataclass
class Services:
    users: UserService
    auth: AuthService
    tasks: TaskService


def new_services(repositories, hasher, token_ttl=TOKEN_TTL):
    return Services(
        users=DefaultUserService(repositories.users, hasher),
        auth=AuthService(repositories.users, ttl=token_ttl),
        tasks=DefaultTaskService(repositories.tasks),
    )
