import os
import tempfile

import django


# Keep test telemetry and storage out of the working tree.
os.environ.setdefault("CHARTSCAN_STORAGE_DIR", tempfile.mkdtemp(prefix="chartscan-tests-"))
# Ensure Django settings are configured before importing app modules in tests.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "chart_site.settings")

from django.conf import settings  # noqa: E402

settings.ALLOWED_HOSTS = ["testserver", "localhost", "127.0.0.1"]
django.setup()
