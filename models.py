from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from enum import Enum

# commit 之後不重新讀取,update 可以直接回傳合併後的資料
db = SQLAlchemy(session_options={'expire_on_commit': False})


def utcnow():
    return datetime.now(timezone.utc)


def isoformat(value):
    """時間一律以 UTC 輸出 (SQLite 讀回來的是 naive datetime)"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# ============================================
# Priority
# ============================================
class Priority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    @classmethod
    def parse(cls, value):
        """
        把 payload 裡的 priority 轉成 Priority

        接受名稱 (不分大小寫) 或順序值 0/1/2,
        其他值回傳 None,交給 validator 回報 invalid priority value
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
            return None
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    # 關聯
    tasks_created = db.relationship('Task', backref='creator', lazy=True)


# ============================================
# 2. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.Text, nullable=False)
    priority = db.Column(
        db.Enum(
            Priority,
            name='task_priority',
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=Priority.LOW,
    )
    description = db.Column(db.String(255), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    # 擁有者,建立後不會再改變
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)

    # 索引
    __table_args__ = (
        db.Index('idx_task_created_by', 'created_by'),
        db.Index('idx_task_due_date', 'due_date'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'priority': self.priority.value if self.priority else None,
            'description': self.description or '',
            'due_date': isoformat(self.due_date),
            'created_at': isoformat(self.created_at),
            'created_by': self.created_by,
        }
