from functools import wraps
from flask import Blueprint, request, jsonify, current_app, g
from errors import Unauthorized, ValidationFailed
from extensions import limiter
from schemas import RegisterSchema, LoginSchema, decode_request
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

SERVICES_KEY = 'task_manager_services'

# ============================================
# Helper Functions
# ============================================

def get_services():
    """從 Flask app extensions 取得 services (不用 global variable)"""
    return current_app.extensions[SERVICES_KEY]


def extract_bearer_token(header):
    """
    從 Authorization header 取出 token

    "Bearer " 前綴不分大小寫,沒有前綴時整段當成 token
    """
    value = header.strip()
    if len(value) > 7 and value[:6].upper() == 'BEARER' and value[6].isspace():
        value = value[7:].strip()
    return value


def token_required(fn):
    """
    驗證 identity token,並把呼叫者的 Identity 當成第一個參數傳給 view

    失敗一律回 401 (由 app 的 error handler 處理 Unauthorized)
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        header = request.headers.get('Authorization', '')
        token = extract_bearer_token(header)
        if not token:
            logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, token is missing")
            raise Unauthorized("token is missing!")

        try:
            identity = get_services().auth.verify_token(token)
        except Unauthorized as e:
            logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {e}")
            raise

        g.identity = identity
        return fn(identity, *args, **kwargs)

    return wrapper

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per hour")
def register():
    """
    使用者註冊

    1. 解碼 + 驗證 payload (422)
    2. 檢查 email 是否已存在、雜湊密碼、寫入 (失敗一律 500)
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'error': 'bad_request', 'message': 'Request body must be JSON'}), 400

    is_decoded, result = decode_request(RegisterSchema, data)
    if not is_decoded:
        raise ValidationFailed('store user: invalid payload', details=result)

    v = result.validate()
    if not v.validated:
        raise ValidationFailed(f"store user validation failed: {v.message}")

    user = get_services().users.register_user(result)

    logger.info(f"New user registered: {user.email}")

    return jsonify({'message': 'successfully created user'}), 200

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """
    使用者登入

    不區分是 email 錯還是 password 錯,避免帳號枚舉攻擊
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'error': 'bad_request', 'message': 'Request body must be JSON'}), 400

    is_decoded, result = decode_request(LoginSchema, data)
    if not is_decoded:
        raise ValidationFailed('login: invalid payload', details=result)

    v = result.validate()
    if not v.validated:
        raise ValidationFailed(f"login: login request is invalid: {v.message}")

    services = get_services()
    try:
        user = services.users.login_user(result)
    except Unauthorized as e:
        logger.warning(f"Failed login attempt for email: {result.email} ({e})")
        return jsonify({'error': 'invalid_credentials', 'message': 'failed to authenticate, incorrect credentials'}), 401

    token = services.auth.create_token(user)

    logger.info(f"User logged in: {user.email}")

    return jsonify({'token': token}), 200
