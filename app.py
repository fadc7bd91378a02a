from flask import Flask

from config import IS_PRODUCTION, RATELIMIT_STORAGE_URI, STORAGE_BACKEND, LOCAL_STORAGE_DIR
from database import close_connection
from extensions import limiter

# Blueprints
from routes.fulfillment import fulfillment_bp


def create_app(test_config=None):
    app = Flask(__name__)

    app.config['RATELIMIT_STORAGE_URI'] = RATELIMIT_STORAGE_URI

    # Apply Test Config Overrides (Early)
    if test_config:
        app.config.update(test_config)

    # Setup Structured Logging
    from utils.logger import setup_logger
    setup_logger(app)

    # Health Check (Validates DB connectivity)
    @app.route("/healthz")
    def healthz():
        try:
            from database import get_db
            db = get_db()
            db.execute("SELECT 1").fetchone()
            return {"status": "ok", "db": "connected"}, 200
        except Exception as e:
            return {"status": "error", "db": str(e)}, 503

    # Simple ping endpoint for Docker health checks
    @app.route("/ping")
    def ping():
        return {"status": "ok"}, 200

    # Extensions
    limiter.init_app(app)

    # Database Teardown
    app.teardown_appcontext(close_connection)

    # Blueprints
    app.register_blueprint(fulfillment_bp)

    # Local Storage Serving (Only for Local Backend)
    if STORAGE_BACKEND != 's3':
        from flask import send_from_directory

        @app.route('/storage/<path:filename>')
        def serve_storage(filename):
            # Print masters for local Gelato sandbox runs
            return send_from_directory(LOCAL_STORAGE_DIR, filename)

    return app

# WSGI Entry Point
app = create_app()

if __name__ == "__main__":
    app.run(host='0.0.0.0', debug=not IS_PRODUCTION)
