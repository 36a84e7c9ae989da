import os
import tempfile

# configuration and stored catalogs of the tests go to a scratch directory
if 'ANISORAY_DIR' not in os.environ:
    os.environ['ANISORAY_DIR'] = tempfile.mkdtemp(prefix='anisoray-test-')

from . import common  # noqa
