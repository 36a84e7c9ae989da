import os
import sys
import time
import math
import shutil
import logging
import functools
import tempfile
from io import StringIO

logger = logging.getLogger('anisoray.test.common')

# coarse settings keeping catalog construction in the tests fast
coarse_intervals = dict(
    inner_core_interval=25.,
    outer_core_interval=25.,
    mantle_interval=10.)

coarse_delta_delta = math.radians(4.)
coarse_standard_delta_p = 10.
coarse_minimum_delta_p = 0.5


def coarse_mesh(structure):
    from anisoray.mesh import ComputationalMesh
    return ComputationalMesh(
        structure, integral_threshold=0.9, **coarse_intervals)


def kernel(structure):
    from anisoray.woodhouse import Woodhouse1981
    return Woodhouse1981(structure)


def raypath(structure, p):
    from anisoray.raypath import Raypath
    ray = Raypath(p, kernel(structure), coarse_mesh(structure))
    ray.compute()
    return ray


@functools.lru_cache(maxsize=None)
def coarse_catalog(name='iprem'):
    from anisoray import structure
    from anisoray.catalog import RaypathCatalog

    s = structure.get_structure(name)
    cat = RaypathCatalog(
        s, coarse_mesh(s), coarse_delta_delta,
        minimum_delta_p=coarse_minimum_delta_p,
        standard_delta_p=coarse_standard_delta_p)

    t0 = time.time()
    cat.build()
    logger.info('Built test catalog for %s in %.1f s' % (
        name, time.time() - t0))
    return cat


class AnisorayExit(Exception):
    def __init__(self, res):
        Exception.__init__(self, str(res))
        self.result = res


class Capture(object):
    def __init__(self, tee=False):
        self.file = StringIO()
        self.tee = tee

    def __enter__(self):
        self.orig_stdout = sys.stdout
        self.orig_exit = sys.exit
        sys.stdout = self

        def my_exit(res):
            raise AnisorayExit(res)

        sys.exit = my_exit

    def __exit__(self, *args):
        sys.stdout = self.orig_stdout
        sys.exit = self.orig_exit

    def write(self, data):
        self.file.write(data)
        if self.tee:
            self.orig_stdout.write(data)

    def writelines(self, lines):
        for line in lines:
            self.write(line)

    def flush(self):
        self.file.flush()

    def isatty(self):
        return False

    def getvalue(self):
        return self.file.getvalue()


def call(program, *args, **kwargs):
    if program == 'anisoray':
        from anisoray.apps.anisoray import main
    else:
        assert False, 'program %s not available' % program

    tee = kwargs.get('tee', False)
    logger.info('Calling: %s %s' % (program, ' '.join(args)))
    cap = Capture(tee=tee)
    with cap:
        main(list(args))

    return cap.getvalue()


def call_assert_usage(program, *args):
    res = None
    try:
        call(program, *args)
    except AnisorayExit as e:
        res = e.result

    assert res.startswith('Usage')


class run_in_temp(object):
    def __init__(self, path=None):
        self._must_delete = False
        self._path = path

    def __enter__(self):
        if self._path is None:
            self._path = tempfile.mkdtemp(prefix='anisoray-test')
            self._must_delete = True

        self._oldwd = os.getcwd()
        os.chdir(self._path)
        return self._path

    def __exit__(self, *args):
        os.chdir(self._oldwd)
        if self._must_delete:
            shutil.rmtree(self._path)
