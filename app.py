"""
Hiroshima Grid Planning Dashboard
"""
import os
import logging
from flask import Flask, redirect
from dash import Dash
import dash_bootstrap_components as dbc

# Import Dash components
from layout import create_layout
from callbacks import register_callbacks

# Import data context
from config import load_config
from data_loader import DataRegistry

# ==========================
# LOGGING CONFIGURATION
# ==========================
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ==========================
# FLASK SERVER SETUP
# ==========================
server = Flask(__name__)
server.secret_key = os.environ.get("SECRET_KEY", "CHANGE_ME_IN_PRODUCTION")

config = load_config()
registry = DataRegistry(config)

# ==========================
# FLASK ROUTES
# ==========================

@server.route("/")
@server.route("/home")
def index():
    """Redirect root to dashboard"""
    return redirect("/dash/")

@server.route("/health")
def health():
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "app": "Hiroshima Grid Planning Dashboard",
        "year": config.get('year'),
        "loaded": registry.is_cached(config.get('year'))
    }, 200

# ==========================
# DASH APP SETUP
# ==========================
logger.info("Initializing Dash application...")

app = Dash(
    __name__,
    server=server,
    url_base_pathname="/dash/",
    external_stylesheets=[
        dbc.themes.BOOTSTRAP,
        "https://cdnjs.cloudflare.com/ajax/libs/font-awesome/6.4.0/css/all.min.css"
    ],
    suppress_callback_exceptions=True,
    title="Hiroshima Grid Planning Dashboard",
    meta_tags=[
        {"name": "viewport", "content": "width=device-width, initial-scale=1"}
    ]
)

# Set the layout
app.layout = create_layout(config)

# Register all callbacks
register_callbacks(app, registry)

logger.info("Dash application initialized")

# ==========================
# PRELOAD DATA ON STARTUP
# ==========================
logger.info("=" * 70)
logger.info(f"PRELOADING GRID DATA FOR {config.get('year')}")
logger.info("=" * 70)

try:
    # Traffic stays unloaded until a traffic or score view asks for it
    data = registry.loaded(config.get('year'))

    logger.info(f"✓ Grid loaded with {len(data.grid['features'])} cells")
    logger.info(f"✓ Population max {data.maxima['population_max']:.0f}, "
                f"floor max {data.maxima['floor_max']:.0f}")
    logger.info("=" * 70)
    logger.info("APPLICATION READY")
    logger.info("=" * 70)

except Exception as e:
    logger.error("=" * 70)
    logger.error("FAILED TO PRELOAD GRID DATA")
    logger.error(f"Error: {e}", exc_info=True)
    logger.error("=" * 70)
    logger.error("Application may not function correctly")
    logger.error("Please check DASHBOARD_DATA_ROOT and the source locations in config.py")

# ==========================
# RUN SERVER
# ==========================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 10000))
    debug = os.environ.get("FLASK_ENV") == "development"

    logger.info(f"Starting server on port {port} (debug={debug})")

    server.run(
        host="0.0.0.0",
        port=port,
        debug=debug
    )
