import os
from datetime import timedelta
from dotenv import load_dotenv

# 載入 .env 檔案
load_dotenv()

DEFAULT_SECRET_KEY = 'dev-secret-key-change-in-production'


def build_database_url():
    """
    決定資料庫連線字串

    1. DATABASE_URL 優先
    2. 有 DB_HOST 時用 DB_* 組出 PostgreSQL URL
    3. 都沒有就用本機 SQLite
    """
    url = os.getenv('DATABASE_URL')
    if url:
        return url

    if os.getenv('DB_HOST'):
        return 'postgresql://{user}:{password}@{host}:{port}/{name}'.format(
            user=os.getenv('DB_USERNAME', ''),
            password=os.getenv('DB_PASSWORD', ''),
            host=os.getenv('DB_HOST'),
            port=os.getenv('DB_PORT', '5432'),
            name=os.getenv('DB_NAME', ''),
        )

    return 'sqlite:///task_manager.db'


def build_engine_options(database_url):
    """Connection pool options; SQLite gets the driver defaults."""
    if database_url.startswith('sqlite'):
        return {}

    options = {
        'pool_size': int(os.getenv('DB_POOL_SIZE', 10)),
        'pool_recycle': int(os.getenv('DB_POOL_RECYCLE', 3600)),
        'pool_pre_ping': True,  # 檢查連線是否有效
        'max_overflow': int(os.getenv('DB_MAX_OVERFLOW', 20)),
    }

    # statement_timeout 也會中斷卡在 row lock 上的查詢
    if database_url.startswith('postgresql'):
        timeout_ms = int(os.getenv('DB_STATEMENT_TIMEOUT_MS', 30000))
        options['connect_args'] = {'options': f'-c statement_timeout={timeout_ms}'}

    return options


class Config:
    """
    應用程式設定

    所有設定都從環境變數讀取,在 create_app() 時傳入,
    不使用 module 層級的 global state
    """

    # ============================================
    # 基本設定
    # ============================================

    SECRET_KEY = os.getenv('SECRET_KEY', DEFAULT_SECRET_KEY)

    ENV = os.getenv('FLASK_ENV', 'development')
    DEBUG = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'

    # ============================================
    # 資料庫設定
    # ============================================

    SQLALCHEMY_DATABASE_URI = build_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = build_engine_options(SQLALCHEMY_DATABASE_URI)

    # ============================================
    # JWT 設定
    # ============================================

    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', SECRET_KEY)

    # Token 在簽發後 24 小時過期
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        hours=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_HOURS', 24))
    )

    # 簽章用 HS256,驗證只接受 HMAC 家族
    JWT_ALGORITHM = 'HS256'
    JWT_DECODE_ALGORITHMS = ['HS256', 'HS384', 'HS512']

    # ============================================
    # 密碼雜湊
    # ============================================

    BCRYPT_LOG_ROUNDS = int(os.getenv('BCRYPT_LOG_ROUNDS', 12))

    # bcrypt 只看前 72 bytes,先做 SHA-256 再雜湊 (hash 與 check 都會套用)
    BCRYPT_HANDLE_LONG_PASSWORDS = True

    # ============================================
    # CORS 設定
    # ============================================

    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:5500').split(',')

    # ============================================
    # Rate Limiting 設定
    # ============================================

    REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = REDIS_URL if ENV == 'production' else 'memory://'
    RATELIMIT_STRATEGY = 'fixed-window'
    RATELIMIT_HEADERS_ENABLED = True

    # ============================================
    # Request 設定
    # ============================================

    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', 50 * 1024 * 1024))  # 50MB

    # ============================================
    # Logging 設定
    # ============================================

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    API_VERSION = '1.0.0'

    @classmethod
    def validate(cls):
        """
        驗證設定是否正確

        在啟動時檢查必要的設定是否都有設定
        """
        if not str(cls.JWT_SECRET_KEY or '').strip():
            raise ValueError('JWT_SECRET_KEY is required')

        if cls.ENV != 'production':
            return

        required_in_production = [
            'SECRET_KEY',
            'JWT_SECRET_KEY',
        ]
        missing = [key for key in required_in_production if not os.getenv(key)]
        if not (os.getenv('DATABASE_URL') or os.getenv('DB_HOST')):
            missing.append('DATABASE_URL')

        if missing:
            raise ValueError(
                f"Missing required environment variables in production: {', '.join(missing)}"
            )

        # 檢查是否使用預設的 secret key
        if cls.SECRET_KEY == DEFAULT_SECRET_KEY or cls.JWT_SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("You must set a strong SECRET_KEY in production!")


class DevelopmentConfig(Config):
    """開發環境設定"""
    DEBUG = True
    SQLALCHEMY_ECHO = True  # 印出 SQL 查詢


class ProductionConfig(Config):
    """生產環境設定"""
    ENV = 'production'
    DEBUG = False
    TESTING = False


class TestingConfig(Config):
    """測試環境設定"""
    ENV = 'testing'
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'  # 使用記憶體資料庫
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = 'testing-secret-key'
    JWT_SECRET_KEY = 'testing-jwt-secret-key-with-enough-length'
    BCRYPT_LOG_ROUNDS = 4
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'


# 根據環境變數選擇設定
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """取得當前環境的設定"""
    env = os.getenv('FLASK_ENV', 'development')
    return config.get(env, config['default'])
