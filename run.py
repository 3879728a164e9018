"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py --debug run
    flask --app run.py seed-options
    flask --app run.py recompute-summaries

BUDGET_CONFIG selects the configuration class (default: config.Config).
"""

import os

from budget_revision import create_app

app = create_app(os.environ.get("BUDGET_CONFIG", "config.Config"))

if __name__ == "__main__":
    # dev only; use `flask run` or a WSGI server otherwise
    app.run(debug=True)
