"""
Creates and returns main flask app
"""

import threading

from flask import Flask, jsonify
from flask_cors import CORS

from .seeker.routes import seeker
from .seeker.seeker import start_seeker


def create_app(start_background_seeker: bool = True):
    """Create Flask app and start the seeker in a background thread"""
    app = Flask(__name__)
    CORS(app)

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({"status": "healthy"}), 200

    if start_background_seeker:
        seeker_thread = threading.Thread(target=start_seeker, name="oev-seeker", daemon=True)
        seeker_thread.start()

    app.register_blueprint(seeker, url_prefix="/seeker")

    return app
