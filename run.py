"""Local development entry point.

Usage:
    python run.py
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from paywall import create_app

app = create_app()

if __name__ == "__main__":
    print(f"Server ready on http://localhost:{app.config['PORT']}")
    app.run(debug=app.debug, host="0.0.0.0", port=app.config["PORT"])
