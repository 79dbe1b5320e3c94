import os

from foodyscan import create_app


app = create_app()


if __name__ == "__main__":
    debug = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    port = int(os.environ.get("PORT", "5000"))
    app.run(debug=debug, port=port)
