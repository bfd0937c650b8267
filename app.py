import logging

from config import FLASK_DEBUG
from web.app_factory import create_app

logger = logging.getLogger(__name__)

app = create_app()


if __name__ == '__main__':
    app.run(debug=FLASK_DEBUG)
