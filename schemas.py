from marshmallow import Schema, fields, post_load, ValidationError, EXCLUDE

from models import Priority
from validators import CreateTaskRequest, UpdateTaskRequest, CreateUserRequest, Credentials

# ============================================
# Payload 解碼 (用 marshmallow)
#
# 這裡只做型別轉換,規則檢查交給 validators
# ============================================


class PriorityField(fields.Field):
    """接受 "low"/"medium"/"high" 或 0/1/2"""

    def _deserialize(self, value, attr, data, **kwargs):
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValidationError('invalid payload')
        return Priority.parse(value)

    def _serialize(self, value, attr, obj, **kwargs):
        if value is None:
            return None
        return value.value


class TaskPayloadSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(load_default='', allow_none=True)
    priority = PriorityField(load_default=None, allow_none=True)
    description = fields.Str(load_default='', allow_none=True)
    due_date = fields.DateTime(load_default=None, allow_none=True)

    def _clean(self, data):
        data['name'] = data.get('name') or ''
        data['description'] = data.get('description') or ''
        return data


class CreateTaskSchema(TaskPayloadSchema):
    @post_load
    def make_request(self, data, **kwargs):
        return CreateTaskRequest(**self._clean(data))


class UpdateTaskSchema(TaskPayloadSchema):
    @post_load
    def make_request(self, data, **kwargs):
        return UpdateTaskRequest(**self._clean(data))


class RegisterSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(load_default='')
    email = fields.Str(load_default='')
    password = fields.Str(load_default='')

    @post_load
    def make_request(self, data, **kwargs):
        return CreateUserRequest(**data)


class LoginSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    email = fields.Str(load_default='')
    password = fields.Str(load_default='')

    @post_load
    def make_request(self, data, **kwargs):
        return Credentials(**data)


def decode_request(schema_class, data):
    """
    統一的 payload 解碼函數

    Returns:
        tuple: (is_decoded, request_or_errors)
    """
    schema = schema_class()
    try:
        return True, schema.load(data)
    except ValidationError as err:
        return False, err.messages
