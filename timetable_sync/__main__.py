"""
Package entry point.

Allows running the application via:

    python -m timetable_sync

This simply forwards execution to timetable_sync.cli.main().
"""

from timetable_sync.cli import main

if __name__ == "__main__":
    main()
