import os
import shutil
import tempfile
import unittest
from unittest import mock

from pyrocko import util
from pyrocko.guts import dump

from anisoray import config
from anisoray.error import BadConfig
from anisoray.structure import PolynomialLayer


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp(prefix='anisoray-test')
        self.patches = [
            mock.patch.object(config, 'anisoray_dir_tmpl', self.tempdir),
            mock.patch.dict(config.g_conf, clear=True),
            mock.patch.dict(config.g_conf_mtime, clear=True)]

        for p in self.patches:
            p.start()

    def tearDown(self):
        for p in self.patches:
            p.stop()

        shutil.rmtree(self.tempdir)

    def conf_path(self):
        return os.path.join(self.tempdir, 'config.pf')

    def touch(self):
        st = os.stat(self.conf_path())
        os.utime(self.conf_path(), (st.st_atime, st.st_mtime + 10.))

    def test_defaults(self):
        conf = config.config()
        assert os.path.exists(self.conf_path())
        self.assertEqual(conf.delta_delta, 1.0)
        self.assertEqual(conf.integral_threshold, 0.9)
        self.assertEqual(conf.interpolation_degree, 2)
        self.assertEqual(conf.search_tolerance, 0.005)
        self.assertEqual(conf.coefficient_cache_size, 4096)
        assert conf.nthreads is None
        conf.validate()

    def test_modify(self):
        conf = config.raw_config()
        conf.delta_delta = 2.5
        conf.mantle_interval = 5.0
        config.write_config(conf)
        self.touch()

        conf = config.config()
        self.assertEqual(conf.delta_delta, 2.5)
        self.assertEqual(conf.mantle_interval, 5.0)

    def test_placeholders(self):
        conf = config.raw_config()
        conf.cache_dir = '$ANISORAY_TEST_PLACEHOLDER/catalogs'
        config.write_config(conf)
        self.touch()

        with mock.patch.dict(
                os.environ, {'ANISORAY_TEST_PLACEHOLDER': '/some/where'}):
            self.assertEqual(
                config.config().cache_dir, '/some/where/catalogs')

        # the raw configuration keeps the placeholder
        self.assertEqual(
            config.raw_config().cache_dir,
            '$ANISORAY_TEST_PLACEHOLDER/catalogs')

    def test_bad_config(self):
        util.ensuredirs(self.conf_path())
        dump(PolynomialLayer(rmin=0., rmax=1., rho=[1.], vpv=[1.], vsv=[1.]),
             filename=self.conf_path())

        with self.assertRaises(BadConfig):
            config.config()


if __name__ == '__main__':
    util.setup_logging('test_config', 'warning')
    unittest.main()
