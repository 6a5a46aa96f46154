"""
SignageCMS - Content Resolution Engine
Main Flask application entry point
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

from config import config
from models import db

# Global instances
socketio = SocketIO()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name=None):
    """Application factory pattern"""

    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # Initialize extensions
    db.init_app(app)

    # CORS configuration (players poll from arbitrary origins)
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST", "PUT", "DELETE"],
            "allow_headers": ["Content-Type"]
        }
    })

    # Rate limiting (reads RATELIMIT_* from config)
    limiter.init_app(app)

    # SocketIO initialization
    cors_origins = app.config['CORS_ORIGINS']
    if cors_origins == ['*']:
        cors_origins = '*'
    socketio.init_app(app,
                      cors_allowed_origins=cors_origins,
                      async_mode='threading',
                      logger=app.config['DEBUG'],
                      engineio_logger=app.config['DEBUG'])

    # Setup logging
    setup_logging(app)

    # Register blueprints
    from routes.player_routes import player_bp
    from routes.content_routes import content_bp

    app.register_blueprint(player_bp, url_prefix='/api')
    app.register_blueprint(content_bp, url_prefix='/api')

    # Import SocketIO event handlers
    import socketio_events  # noqa: F401

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests'}), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    # Store limiter in app for use in blueprints
    app.limiter = limiter  # type: ignore

    # Background offline sweep
    if not app.testing:
        from utils.scheduler import init_scheduler, shutdown_scheduler
        init_scheduler(app)

        # Register shutdown handler
        import atexit
        atexit.register(shutdown_scheduler)

    return app


def setup_logging(app):
    """Configure application and API request logging"""

    if not app.debug and not app.testing:
        # Create logs directory if it doesn't exist
        if not os.path.exists(app.config['LOG_FOLDER']):
            os.mkdir(app.config['LOG_FOLDER'])

        # Application log handler
        file_handler = RotatingFileHandler(
            app.config['APP_LOG_FILE'],
            maxBytes=10240000,  # 10MB
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        app.logger.setLevel(logging.INFO)

        # Player API request log
        from routes.player_routes import setup_api_logger
        setup_api_logger(app)

        app.logger.info('SignageCMS startup')


if __name__ == '__main__':
    app = create_app()

    # Create database tables if they don't exist
    with app.app_context():
        db.create_all()

    # Run the application with SocketIO
    socketio.run(
        app,
        host=app.config['FLASK_HOST'],
        port=app.config['FLASK_PORT'],
        debug=app.config['DEBUG'],
        allow_unsafe_werkzeug=True
    )
