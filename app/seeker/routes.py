"""Module for handling API routes"""

from flask import Blueprint, jsonify, make_response

from .logging_config import setup_logger
from .seeker import get_seeker

logger = setup_logger()

seeker = Blueprint("seeker", __name__)


@seeker.route("/status", methods=["GET"])
def get_status():
    running_seeker = get_seeker()
    if running_seeker is None:
        return jsonify({"error": "Seeker not initialized"}), 500

    logger.debug("API: Getting seeker status")
    return make_response(jsonify(running_seeker.status()))
