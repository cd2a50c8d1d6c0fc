# run.py
import atexit

from courier_eta.config import Config
from courier_eta.main import build_services, create_app

if __name__ == "__main__":
    services = build_services(Config)
    atexit.register(services.shutdown)
    app = create_app(Config, services=services)
    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
    )
