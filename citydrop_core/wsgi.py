"""
WSGI config for CITYDROP.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'citydrop_core.settings')

application = get_wsgi_application()
