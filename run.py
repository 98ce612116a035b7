"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py create-db
    flask --app run.py seed-demo
    flask --app run.py --debug run

"""

from projectledger import create_app

# WSGI application object; `flask run` and WSGI servers look for `app`.
app = create_app()

if __name__ == "__main__":
    # Dev only; use `flask run` or a WSGI server otherwise.
    app.run(debug=True)
