#!/usr/bin/env python
"""Django management entrypoint for the example boutique server.

Run ``python manage.py migrate`` once, then ``python manage.py runserver``.
"""

import os
import sys


def main() -> None:
    """Run administrative tasks."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")
    from django.core.management import execute_from_command_line

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
