#!/usr/bin/env python3
"""Entry point for the Tennis Court Finder API."""
import os
from backend.app import create_app
from backend.log_utils import get_logger

config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)
logger = get_logger('run')

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5001))
    logger.info('server_starting', url=f'http://localhost:{port}', config=config_name)
    app.run(host='0.0.0.0', port=port, debug=(config_name == 'development'))
