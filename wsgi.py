"""
WSGI Application Entry Point

Used by gunicorn (`gunicorn -c gunicorn.conf.py wsgi:application`) and any
other WSGI server.
"""
import logging
import os
import sys

app_dir = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.join(app_dir, 'src'))

# Configure logging
log_level = getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)
formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

root_logger = logging.getLogger()
root_logger.setLevel(log_level)

stream_handler = logging.StreamHandler()
stream_handler.setLevel(log_level)
stream_handler.setFormatter(formatter)
root_logger.addHandler(stream_handler)

log_file_path = os.environ.get('LOG_FILE')
if log_file_path:
    try:
        file_handler = logging.FileHandler(log_file_path, mode='a')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError as e:
        logging.getLogger(__name__).error(f"Failed to setup file logging at {log_file_path}: {e}")

from account_merge.app import create_app  # noqa: E402

application = create_app()
logging.getLogger(__name__).info("Account merge service started")

if __name__ == "__main__":
    # For local testing
    application.run()
