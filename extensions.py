from flask_bcrypt import Bcrypt
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# 擴展 (在 create_app() 裡用 init_app 綁定)
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()

# Rate Limiting
# storage 由 RATELIMIT_STORAGE_URI 決定: 開發環境用記憶體,production 用 Redis
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
)
