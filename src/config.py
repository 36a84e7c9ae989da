# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
User configuration of anisoray.

The configuration is stored in YAML format in ``~/.anisoray/config.pf``
(the directory can be changed with the environment variable
``ANISORAY_DIR``). A file with default values is written on first use. The
numerical constants of the catalog construction are empirically tuned; they
can be overridden here or per call, but changing them alters the numerical
results of the catalogs.
'''

import os
import os.path as op
from copy import deepcopy
import logging

from pyrocko import util
from pyrocko.guts import Object, Float, Int, String, load, dump

from .error import BadConfig


logger = logging.getLogger('anisoray.config')

guts_prefix = 'anisoray'

anisoray_dir_tmpl = os.environ.get(
    'ANISORAY_DIR',
    os.path.join('~', '.anisoray'))


def make_conf_path_tmpl(name='config'):
    return op.join(anisoray_dir_tmpl, '%s.pf' % name)


class PathWithPlaceholders(String):
    '''
    Path, possibly containing placeholders.
    '''
    pass


class ConfigBase(Object):
    @classmethod
    def default(cls):
        return cls()


class AnisorayConfig(ConfigBase):
    cache_dir = PathWithPlaceholders.T(
        default=os.path.join(anisoray_dir_tmpl, 'cache'),
        help='Directory where computed raypath catalogs are stored.')
    delta_delta = Float.T(
        default=1.0,
        help='Maximum gap [deg] in epicentral distance between neighbouring '
             'raypaths of a catalog.')
    minimum_delta_p = Float.T(
        default=0.01,
        help='Smallest gap [s/rad] in ray parameter between neighbouring '
             'raypaths of a catalog.')
    standard_delta_p = Float.T(
        default=5.0,
        help='Ray parameter step [s/rad] of the coarse catalog sampling.')
    mesh_eps = Float.T(
        default=1e-7,
        help='Offset [km] of mesh end points from discontinuities.')
    inner_core_interval = Float.T(
        default=1.0,
        help='Maximum mesh interval [km] in the inner core.')
    outer_core_interval = Float.T(
        default=1.0,
        help='Maximum mesh interval [km] in the outer core.')
    mantle_interval = Float.T(
        default=1.0,
        help='Maximum mesh interval [km] in the mantle.')
    integral_threshold = Float.T(
        default=0.9,
        help='Below this ratio of radial slowness to its vertical incidence '
             'value, the turning point quadrature rule is used.')
    interpolation_degree = Int.T(
        default=2,
        help='Degree of the local polynomial used by catalog searches.')
    search_tolerance = Float.T(
        default=0.005,
        help='Largest misfit [deg] between the epicentral distance of a '
             'raypath found by a catalog search and the target distance.')
    coefficient_cache_size = Int.T(
        default=4096,
        help='Number of radius arrays kept in a kernel coefficient cache.')
    near_zero_radius = Float.T(
        default=1.0,
        help='Radius [km] below which inner core legs are evaluated with '
             'the coefficients at the center.')
    nthreads = Int.T(
        optional=True,
        help='Number of worker threads (default: number of CPUs).')


config_cls = {
    'config': AnisorayConfig,
}


def expand(x):
    x = op.expanduser(op.expandvars(x))
    return x


def rec_expand(x):
    for prop, val in x.T.ipropvals(x):
        if isinstance(prop, PathWithPlaceholders.T):
            newval = expand(val)
            if newval != val:
                setattr(x, prop.name, newval)

        elif isinstance(val, Object):
            rec_expand(val)


def processed(config):
    config = deepcopy(config)
    rec_expand(config)
    return config


def mtime(p):
    return os.stat(p).st_mtime


g_conf_mtime = {}
g_conf = {}


def raw_config(config_name='config'):

    conf_path = expand(make_conf_path_tmpl(config_name))

    if not op.exists(conf_path):
        g_conf[config_name] = config_cls[config_name].default()
        write_config(g_conf[config_name], config_name)

    conf_mtime_now = mtime(conf_path)
    if conf_mtime_now != g_conf_mtime.get(config_name, None):
        g_conf[config_name] = load(filename=conf_path)
        if not isinstance(g_conf[config_name], config_cls[config_name]):
            with open(conf_path, 'r') as fconf:
                logger.warning('Config file content:')
                for line in fconf:
                    logger.warning('   ' + line)

            raise BadConfig('config file does not contain a '
                            'valid "%s" section. Found: %s' % (
                                config_cls[config_name].__name__,
                                type(g_conf[config_name])))

        g_conf_mtime[config_name] = conf_mtime_now

    return g_conf[config_name]


def config(config_name='config'):
    return processed(raw_config(config_name))


def write_config(conf, config_name='config'):
    conf_path = expand(make_conf_path_tmpl(config_name))
    util.ensuredirs(conf_path)
    dump(conf, filename=conf_path)


if __name__ == '__main__':
    print(config())
