# Filename: evoting/__main__.py
# Development server: `python -m evoting` (or `flask --app evoting run`).

import logging

from .app import create_app, seed_demo_data


def main():
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S")
    app = create_app()
    with app.app_context():
        seed_demo_data()
    socketio = app.extensions["socketio"]
    print("Starting Flask-SocketIO server on 127.0.0.1:5000...")
    socketio.run(app, host="127.0.0.1", port=5000, debug=True)


if __name__ == "__main__":
    main()
