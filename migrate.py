"""
Apply pending database migrations without starting the web server.

Usage:
  python migrate.py

Uses Flask-Migrate (Alembic) against the migrations/ directory.
"""

import os
import sys
import traceback


def main():
    # Schema comes from the migrations below, not from startup DDL.
    os.environ['RUN_STARTUP_DDL'] = '0'

    import highhelp
    from flask_migrate import upgrade

    try:
        print("Applying database migrations...")
        with highhelp.app.app_context():
            upgrade(directory=os.path.join(highhelp.BASE_DIR, 'migrations'))
        print("Migrations completed successfully.")
    except Exception as e:
        print(f"Migration failed: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
