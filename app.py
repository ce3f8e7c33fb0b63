"""
Flask application for the clinical decision-support service.
"""

import os
import logging

from flask import Flask, jsonify
from flask_cors import CORS

from api.clinical_api import clinical_api
from services.clinical_engine import create_clinical_engine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def create_app(config_dir=None, engine=None) -> Flask:
    """Build the app; rules come from config_dir, else CLINICAL_RULES_DIR, else the bundled set"""
    app = Flask(__name__)
    CORS(app)

    app.config['CLINICAL_RULES_DIR'] = config_dir or os.environ.get('CLINICAL_RULES_DIR')
    app.config['CLINICAL_ENGINE'] = engine or create_clinical_engine(app.config['CLINICAL_RULES_DIR'])

    app.register_blueprint(clinical_api)
    logger.info("Clinical API blueprint registered")

    @app.route('/health')
    def health():
        engine = app.config['CLINICAL_ENGINE']
        return jsonify({
            'status': 'healthy',
            'protocols': len(engine.protocols),
            'medications': len(engine.formulary)
        })

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    return app

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8084))
    create_app().run(host='0.0.0.0', port=port)
