"""
Development entry point.

Usage:
    python run.py

Starts the auth API on http://localhost:5000.
Demo credentials: collector@bourbon.example / SecureP@ss123!
"""

from bourbon_auth import create_app

app = create_app()

if __name__ == '__main__':
    app.run(
        host='127.0.0.1',
        port=5000,
        debug=True,
    )
