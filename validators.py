"""
Request validators

純函數: 把 request 物件轉成 ValidationResult,不碰資料庫也不丟 exception。
多個錯誤依檢查順序用 ", " 串成一個訊息。
"""
import re
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parseaddr
from typing import Optional

from marshmallow import ValidationError
from marshmallow.validate import Email

from models import Priority

TASK_NAME_MIN = 3
TASK_NAME_MAX = 64
TASK_DESCRIPTION_MAX = 255
USER_NAME_MIN = 3
PASSWORD_MIN = 5
PASSWORD_MAX = 72  # bcrypt 只使用前 72 bytes

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$')

_email_validator = Email()


@dataclass
class ValidationResult:
    validated: bool = True
    message: str = ''

    def set_failed(self, message):
        self.validated = False
        self.message = f"{self.message}, {message}" if self.message else message


def is_valid_email(value):
    """
    Email 雙重檢查

    1. RFC 5322 address 解析結果必須就是原字串 (不接受 "Name <a@b.c>")
    2. marshmallow 的 Email validator 和嚴格 regex 都要通過
    """
    if not isinstance(value, str) or not value:
        return False

    name, address = parseaddr(value)
    if name or address != value:
        return False

    try:
        _email_validator(value)
    except ValidationError:
        return False

    return EMAIL_PATTERN.match(value) is not None


# ============================================
# Task requests
# ============================================

def validate_task(name, priority, description, due_date):
    res = ValidationResult()

    length = len(name.strip())
    if length < TASK_NAME_MIN or length > TASK_NAME_MAX:
        res.set_failed("name must be between 3 and 64 characters")

    if not isinstance(priority, Priority):
        res.set_failed("invalid priority value")

    if priority == Priority.HIGH and due_date is None:
        res.set_failed("for priority high due date is required")

    # 用原始長度,不 trim
    if len(description) > TASK_DESCRIPTION_MAX:
        res.set_failed("description too long")

    return res


@dataclass
class CreateTaskRequest:
    name: str = ''
    priority: Optional[Priority] = None
    description: str = ''
    due_date: Optional[datetime] = None

    def validate(self):
        return validate_task(self.name, self.priority, self.description, self.due_date)


@dataclass
class UpdateTaskRequest:
    name: str = ''
    priority: Optional[Priority] = None
    description: str = ''
    due_date: Optional[datetime] = None

    def validate(self):
        return validate_task(self.name, self.priority, self.description, self.due_date)


# ============================================
# User requests
# ============================================

@dataclass
class CreateUserRequest:
    name: str = ''
    email: str = ''
    password: str = field(default='', repr=False)

    def validate(self):
        res = ValidationResult()

        if len(self.name.strip()) < USER_NAME_MIN:
            res.set_failed("name must be at least 3 characters long")

        if not is_valid_email(self.email):
            res.set_failed("invalid email")

        length = len(self.password.strip())
        if length < PASSWORD_MIN or length > PASSWORD_MAX:
            res.set_failed("password must be between 5 and 72 characters")

        return res


@dataclass
class Credentials:
    email: str = ''
    password: str = field(default='', repr=False)

    def validate(self):
        res = ValidationResult()

        if len(self.email) < 1:
            res.set_failed("missing email")

        if len(self.password) < 1:
            res.set_failed("missing password")
        elif len(self.password) > PASSWORD_MAX:
            res.set_failed("password must be at most 72 characters")

        # 與 missing email 各自判斷,兩個訊息可以同時出現
        if not is_valid_email(self.email):
            res.set_failed("invalid email")

        return res
