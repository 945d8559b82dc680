"""Local development entry point.

Usage:
    python run.py

Receives Calendly and Stripe webhooks on /webhooks/calendly and
/webhooks/stripe. Tunnel PORT (default 5001) to test them against the live
providers. Re-launches itself inside ./venv when started with another Python.
"""

import os
import sys
import subprocess

# ── Auto-activate virtualenv ──
_project_dir = os.path.dirname(os.path.abspath(__file__))
_venv_python = os.path.join(_project_dir, "venv", "bin", "python")

if os.path.exists(_venv_python) and os.path.realpath(sys.executable) != os.path.realpath(_venv_python):
    print("[run.py] Switching to venv Python...")
    try:
        sys.exit(subprocess.call([_venv_python] + sys.argv))
    except KeyboardInterrupt:
        sys.exit(0)

# ── Normal startup ──
from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from booking_sync import create_app

app = create_app(os.environ.get("FLASK_ENV", "development"))

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    print(f"[run.py] Webhooks: http://localhost:{port}/webhooks/calendly, /webhooks/stripe")
    app.run(debug=app.config.get("DEBUG", False), host="0.0.0.0", port=port)
