"""
WSGI config for the deferred-billing service.

This project is served over ASGI (the job feed needs WebSockets); WSGI is
kept for HTTP-only deployments such as a dedicated webhook worker.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
