"""
ASGI config for gigaid_project project.

It exposes the ASGI callable as a module-level variable named `application`.
The job-completion guards are repaired and installed before the callable is
handed out; a failure aborts startup.
"""

import os
from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'gigaid_project.settings')

# Initialize the Django ASGI application
application = get_asgi_application()

from core.enforcement import initialize_db_enforcement  # noqa: E402

initialize_db_enforcement()
