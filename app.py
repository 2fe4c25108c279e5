from flask import Flask, request, jsonify, g
from flask_cors import CORS
from config import get_config
from errors import TaskManagerError
from extensions import jwt, bcrypt, limiter
from models import db
from repository import new_repositories
from services import new_services
from sqlalchemy import text
from datetime import datetime, timezone
from werkzeug.exceptions import HTTPException
import logging
from logging.handlers import RotatingFileHandler
import os
import uuid

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定完整的 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format

    debug 與 testing 模式不寫檔
    """
    if app.debug or app.testing:
        return

    log_dir = app.config.get('LOG_DIR', 'logs')
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # module logger 都往 root 傳,所以 handler 掛在 root 上
    root = logging.getLogger()
    root.addHandler(info_handler)
    root.addHandler(error_handler)
    root.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    app.logger.info('Application startup')

# ============================================
# 錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(TaskManagerError)
    def handle_task_manager_error(error):
        """應用程式錯誤: 4xx 回傳訊息,5xx 只記 log 不洩漏細節"""
        if error.status_code >= 500:
            db.session.rollback()
            app.logger.error(f"{error.__class__.__name__}: {error}", exc_info=True)
            return jsonify({
                'error': error.error,
                'message': 'An internal error occurred. Please try again later.'
            }), error.status_code

        body = {
            'error': error.error,
            'message': error.message
        }
        if getattr(error, 'details', None) is not None:
            body['details'] = error.details
        return jsonify(body), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'bad_request',
            'message': 'The request is malformed or invalid',
            'status': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'not_found',
            'message': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'method_not_allowed',
            'message': 'method not allowed',
            'status': 405
        }), 405

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({
            'error': 'request_entity_too_large',
            'message': 'request body too large',
            'status': 413
        }), 413

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """
        處理 500 錯誤

        1. 不洩漏錯誤細節給前端
        2. 記錄完整的 stack trace 到 log
        3. rollback transaction
        """
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'internal_server_error',
            'message': 'An internal error occurred. Please try again later.',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,捕捉所有沒被處理的 exception"""
        if isinstance(error, HTTPException):
            return error

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500

# ============================================
# Request/Response Logging
# ============================================

def register_request_hooks(app):

    @app.before_request
    def log_request():
        g.request_id = request.headers.get('X-Request-ID') or uuid.uuid4().hex
        app.logger.info(f"[{g.request_id}] Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        request_id = g.get('request_id')
        # token_required 驗證成功後才會有 identity
        identity = g.get('identity')
        caller = f" user {identity.id}" if identity else ''
        app.logger.info(f"[{request_id}] Response: {response.status_code} for {request.method} {request.path}{caller}")

        if request_id:
            response.headers['X-Request-ID'] = request_id

        # security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        return response

# ============================================
# 基本 routes
# ============================================

def register_base_routes(app):

    @app.route('/ping', methods=['GET'])
    def ping():
        return 'pong', 200

    @app.route('/health', methods=['GET'])
    def health_check():
        """
        健康檢查端點

        用於 load balancer 或監控系統檢查服務是否正常
        """
        try:
            db.session.execute(text('SELECT 1'))
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 200
        except Exception as e:
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        return jsonify({
            'message': 'Task Manager API',
            'version': app.config.get('API_VERSION'),
            'endpoints': {
                'ping': {'path': '/ping', 'methods': ['GET']},
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'register': {'path': '/register', 'methods': ['POST']},
                    'login': {'path': '/login', 'methods': ['POST']}
                },
                'tasks': {
                    'list': {'path': '/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/tasks/:id', 'methods': ['GET', 'PATCH', 'DELETE']}
                }
            },
            'rate_limits': {
                'default': '200 per hour, 1000 per day',
                'auth': {
                    'register': '5 per hour',
                    'login': '10 per minute'
                }
            }
        })

# ============================================
# Application factory
# ============================================

def create_app(config_class=None):
    """
    建立 Flask app

    設定 (DB URL、JWT secret) 由參數傳入,repository 和 service
    在這裡組好後放進 app.extensions
    """
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization', 'X-Request-ID'])

    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    setup_logging(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    from auth import auth_bp, SERVICES_KEY
    from tasks import tasks_bp

    repositories = new_repositories(db.session)
    app.extensions[SERVICES_KEY] = new_services(
        repositories,
        bcrypt,
        token_ttl=app.config['JWT_ACCESS_TOKEN_EXPIRES'],
    )

    app.register_blueprint(auth_bp)
    app.register_blueprint(tasks_bp)

    register_error_handlers(app)
    register_request_hooks(app)
    register_base_routes(app)

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server
    # 應該用 gunicorn: gunicorn "app:create_app()"
    app = create_app()

    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 8000))

    app.run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
