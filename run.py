# Development entry point (debug server).
# In production use wsgi.py + gunicorn (deploy/gunicorn.conf.py).

"""Run the dispatch engine locally.

The configuration class is picked from the environment:

- ``APP_ENV=production`` or ``FLASK_ENV=production`` -> ProductionConfig
- anything else -> DevelopmentConfig.

WebSocket clients connect to ``/ws`` on the same port.
"""

import os

from env_loader import load_dotenv_like

# Load .env if present, before dispatch.config reads the environment.
load_dotenv_like()

from dispatch import create_app
from dispatch.config import DevelopmentConfig, ProductionConfig


def _select_config_class() -> type:
    """Pick the configuration class for the current environment.

    ``APP_ENV`` wins over ``FLASK_ENV``; any value starting with ``prod``
    selects :class:`ProductionConfig`.
    """
    env = (os.getenv('APP_ENV') or os.getenv('FLASK_ENV') or 'development').lower()
    if env.startswith('prod'):
        return ProductionConfig
    return DevelopmentConfig


def main() -> None:
    app = create_app(_select_config_class())
    # threaded: every WebSocket holds a worker thread for its lifetime
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)),
            debug=app.config.get('DEBUG', True), threaded=True)


if __name__ == '__main__':
    main()
