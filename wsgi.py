"""
WSGI entry point: ``gunicorn -c gunicorn_config.py wsgi:app``
"""
import os

from app import create_app

app = create_app(os.environ.get('APP_ENV', 'production'))


def main():
    """Run the development server (``edunexus`` console script)."""
    port = int(os.environ.get('PORT', 5001))
    print("\n" + "=" * 50)
    print(f"Starting EduNexus on http://127.0.0.1:{port}")
    print("=" * 50 + "\n")
    app.run(host='127.0.0.1', port=port, debug=app.config.get('DEBUG', False))


if __name__ == '__main__':
    main()
