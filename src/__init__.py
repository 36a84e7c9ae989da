# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Travel times and raypaths of seismic phases in transversely isotropic,
radially layered planets.

The building blocks are, from the bottom up:

* :py:mod:`anisoray.structure` velocity structures (PREM, iPREM, AK135 or
  user models),
* :py:mod:`anisoray.phase` the phase name grammar,
* :py:mod:`anisoray.woodhouse` ray theory integrands for TI media,
* :py:mod:`anisoray.mesh` and :py:mod:`anisoray.raypath` integration of
  single rays,
* :py:mod:`anisoray.catalog` stored raypath catalogs and arrival searches.
'''

import sys

__version__ = '0.1.0'


def get_logger():
    import logging
    return logging.getLogger('anisoray')


def app_init(log_level='info', program_name=None):
    '''
    Setup logging for anisoray scripts.

    Shortcut for :py:func:`pyrocko.util.setup_logging`.
    '''
    from pyrocko import util
    if program_name is None:
        program_name = sys.argv[0]

    util.setup_logging(program_name, log_level)


def arrivals(phase_name, delta, structure='prem', event_depth=0.0, psv=None):
    '''
    Arrivals of a phase at an epicentral distance.

    :param phase_name: phase name, e.g. ``'PKiKP'``
    :param delta: epicentral distance [deg]
    :param structure: name of a built-in structure, a model file name or a
        :py:class:`~anisoray.structure.VelocityStructure`
    :param event_depth: source depth [km]
    :param psv: treat S legs as SV (only relevant for pure S phases)
    :returns: list of :py:class:`~anisoray.catalog.Arrival` objects
    '''
    import math
    from . import catalog, phase as pmod, structure as smod

    if isinstance(structure, str):
        structure = smod.get_structure(structure)

    cat = catalog.RaypathCatalog.get(structure)
    return cat.arrivals(
        pmod.Phase.create(phase_name, psv),
        structure.earth_radius - event_depth,
        math.radians(delta))
