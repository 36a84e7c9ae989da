# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Catalogs of raypaths for fast phase arrival searches.

A :py:class:`RaypathCatalog` samples ray parameter space such that,
for a set of reference phases, neighbouring raypaths differ by no more than a
given epicentral distance. Arrivals of any phase at a given distance are
then found by bracketing and local polynomial interpolation::

    from anisoray import catalog, phase, structure

    cat = catalog.RaypathCatalog.get(structure.prem())
    for arrival in cat.arrivals(
            phase.Phase.PKiKP, 6371., math.radians(120.)):
        print(arrival)

Catalogs are stored in the cache directory configured in
:py:mod:`anisoray.config` and reused across processes. Within a process,
:py:meth:`RaypathCatalog.get` returns the same instance for equal arguments.
'''

import os
import math
import bisect
import pickle
import hashlib
import logging
import threading
import os.path as op

import numpy as num
from scipy.optimize import brentq

from pyrocko import util

from . import config
from .error import InvalidArguments, CatalogError
from .parimap import parimap
from .phase import Phase, PhasePart
from .mesh import ComputationalMesh
from .raypath import Raypath, to_relative_angle
from .woodhouse import Woodhouse1981, CoefficientCache
from . import structure as smod


logger = logging.getLogger('anisoray.catalog')

catalog_version = 2

UNINITIALIZED = 'uninitialized'
COARSE = 'coarse'
REFINED = 'refined'
READY = 'ready'

reference_phases = [
    Phase.P, Phase.PcP, Phase.PKP, Phase.PKIKP,
    Phase.S, Phase.ScS, Phase.SKS, Phase.SKIKS]

g_catalogs = {}
g_lock = threading.Lock()


def ehash(s):
    return hashlib.sha1(s.encode('utf8')).hexdigest()


def catalog_key(structure, mesh, delta_delta):
    return 'structure=%s mesh=%s delta_delta=%s' % (
        structure.key, mesh.key, repr(float(delta_delta)))


def catalog_filename(cache_dir, key):
    return op.join(cache_dir, 'catalogs', ehash(key) + '.cat')


def check_target(delta, relative_angle):
    if not delta >= 0.0:
        raise InvalidArguments(
            'target distance must be non-negative, got %g' % delta)

    if relative_angle and delta > math.pi:
        raise InvalidArguments(
            'relative target distance must not exceed pi, got %g' % delta)


def _compute(raypath):
    raypath.compute()
    return raypath


class Arrival(object):
    '''
    Arrival of a phase at a given distance.

    :ivar phase: :py:class:`~anisoray.phase.Phase`, for diffracted phases
        with the diffraction angle needed to reach the distance
    :ivar raypath: :py:class:`~anisoray.raypath.Raypath`
    :ivar delta: epicentral distance [rad]
    :ivar t: travel time [s]
    '''

    def __init__(self, phase, raypath, event_r, delta, t):
        self.phase = phase
        self.raypath = raypath
        self.event_r = event_r
        self.delta = delta
        self.t = t

    @property
    def p(self):
        return self.raypath.p

    def __str__(self):
        return '%-10s %10.4f s %10.4f deg  p = %9.4f s/rad' % (
            self.phase, self.t, math.degrees(self.delta), self.p)


class RaypathCatalog(object):
    '''
    Raypaths sampling ray parameter space.

    :param structure: :py:class:`~anisoray.structure.VelocityStructure`
    :param mesh: :py:class:`~anisoray.mesh.ComputationalMesh`
    :param delta_delta: maximum distance [rad] between neighbouring
        raypaths for the reference phases
    :param minimum_delta_p: smallest ray parameter gap [s/rad] created by
        refinement
    :param standard_delta_p: ray parameter step [s/rad] of the initial
        sampling
    :param nthreads: number of threads used for the computation
    :param cache: :py:class:`~anisoray.woodhouse.CoefficientCache` for the
        kernel

    Use :py:meth:`get` to obtain stored or shared instances.
    '''

    def __init__(self, structure, mesh, delta_delta, minimum_delta_p=None,
                 standard_delta_p=None, nthreads=None, cache=None):

        conf = config.config()
        if mesh.structure != structure:
            raise InvalidArguments('mesh is for a different structure')

        if not delta_delta > 0.0:
            raise InvalidArguments('delta_delta must be positive')

        self.structure = structure
        self.mesh = mesh
        self.delta_delta = float(delta_delta)
        self.minimum_delta_p = minimum_delta_p \
            if minimum_delta_p is not None else conf.minimum_delta_p
        self.standard_delta_p = standard_delta_p \
            if standard_delta_p is not None else conf.standard_delta_p
        self.interpolation_degree = conf.interpolation_degree
        self.search_tolerance = math.radians(conf.search_tolerance)
        self.nthreads = nthreads if nthreads is not None else conf.nthreads

        self.kernel = Woodhouse1981(structure, cache)
        self.state = UNINITIALIZED
        self._raypaths = []
        self.pdiff = None
        self.svdiff = None
        self.shdiff = None
        self.klimit = None

    @property
    def key(self):
        return catalog_key(self.structure, self.mesh, self.delta_delta)

    @property
    def raypaths(self):
        '''
        Raypaths of the catalog, sorted by ray parameter.
        '''
        return tuple(self._raypaths)

    def __getstate__(self):
        state = self.__dict__.copy()
        del state['kernel']
        del state['search_tolerance']
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.search_tolerance = math.radians(
            config.config().search_tolerance)
        self.kernel = Woodhouse1981(self.structure, CoefficientCache())
        for raypath in self._raypaths + [
                self.pdiff, self.svdiff, self.shdiff, self.klimit]:

            if raypath is not None:
                raypath.attach(self.kernel)

    def __str__(self):
        return 'RaypathCatalog(%s, %i raypaths, delta_delta=%g deg, %s)' % (
            self.structure.name, len(self._raypaths),
            math.degrees(self.delta_delta), self.state)

    # construction

    def _new_raypaths(self, ps):
        return list(parimap(
            _compute,
            [Raypath(p, self.kernel, self.mesh) for p in ps],
            nthreads=self.nthreads))

    def _insert(self, raypaths):
        for raypath in raypaths:
            i = bisect.bisect_left(self._raypaths, raypath)
            if i < len(self._raypaths) and self._raypaths[i] == raypath:
                continue

            self._raypaths.insert(i, raypath)

    def ray_parameter_limit(self):
        '''
        Largest ray parameter of P, SV and SH at the surface.
        '''
        return max(self.structure.surface_limits())

    def diffraction_ray_parameters(self):
        '''
        Ray parameters of Pdiff, SVdiff, SHdiff and of the K limit.
        '''
        s = self.structure
        cmb = s.cmb + self.mesh.eps
        # K limit: K grazing the ICB from above, icb * sqrt(rho / A) taken at
        # icb + eps, not at the CMB
        icb = s.icb + self.mesh.eps
        return (
            float(s.horizontal_slowness_radius(PhasePart.P, cmb)),
            float(s.horizontal_slowness_radius(PhasePart.SV, cmb)),
            float(s.horizontal_slowness_radius(PhasePart.SH, cmb)),
            float(s.horizontal_slowness_radius(PhasePart.K, icb)))

    def build(self):
        '''
        Sample ray parameter space and refine it for the reference phases.
        '''
        if self.state == READY:
            return

        logger.info('Building raypath catalog for %s' % self.structure)
        self._coarse()
        self._refine()
        self.state = READY
        logger.info('Raypath catalog ready: %s' % self)

    def _coarse(self):
        p_max = self.ray_parameter_limit() + self.standard_delta_p
        ps = num.arange(0.0, p_max, self.standard_delta_p)
        diffractions = self._new_raypaths(self.diffraction_ray_parameters())
        self.pdiff, self.svdiff, self.shdiff, self.klimit = diffractions
        self._insert(self._new_raypaths(ps))
        self._insert(diffractions)
        self.state = COARSE
        logger.debug(
            'Coarse sampling: %i raypaths up to p = %g s/rad',
            len(self._raypaths), p_max)

    def _refine(self):
        for phase in reference_phases:
            self._refine_phase(phase)

        self.state = REFINED

    def _refinement_candidates(self, phase):
        event_r = self.structure.earth_radius
        deltas = [ray.compute_delta(phase, event_r) for ray in self._raypaths]
        ps = []
        for i in range(len(self._raypaths) - 1):
            d1, d2 = deltas[i], deltas[i+1]
            nan1, nan2 = math.isnan(d1), math.isnan(d2)
            if nan1 and nan2:
                continue

            p1, p2 = self._raypaths[i].p, self._raypaths[i+1].p
            if p2 - p1 <= self.minimum_delta_p:
                continue

            # ends of branches are narrowed down to minimum_delta_p
            if nan1 or nan2 or abs(d2 - d1) > self.delta_delta:
                ps.append(0.5 * (p1 + p2))

        return ps

    def _refine_phase(self, phase):
        nadded = 0
        while True:
            ps = self._refinement_candidates(phase)
            if not ps:
                break

            self._insert(self._new_raypaths(ps))
            nadded += len(ps)

        logger.debug(
            'Refinement for %s: %i raypaths added', phase, nadded)

    # searches

    def diffraction_raypath(self, phase):
        '''
        Catalog raypath of the diffracted wave type of a phase.
        '''
        diffraction = phase.diffraction
        if diffraction is None:
            raise InvalidArguments('%s is not a diffracted phase' % phase)

        return {
            PhasePart.P: self.pdiff,
            PhasePart.SV: self.svdiff,
            PhasePart.SH: self.shdiff}[diffraction.phase_part]

    def _grazing(self, phase, event_r, relative_angle):
        raypath = self.diffraction_raypath(phase)
        grazing = phase.grazing()
        delta = raypath.compute_delta(grazing, event_r)
        if relative_angle and not math.isnan(delta):
            delta = to_relative_angle(delta)

        return raypath, grazing, delta

    def diffracted_phase(self, phase, event_r, delta, relative_angle=False):
        '''
        Diffracted phase with the angle needed to reach a distance.

        :returns: :py:class:`~anisoray.phase.Phase` or ``None`` if the
            distance is short of the grazing distance
        '''
        check_target(delta, relative_angle)
        _, grazing, delta0 = self._grazing(phase, event_r, relative_angle)
        if math.isnan(delta0) or delta < delta0:
            return None

        return Phase.create(
            grazing.name.replace(
                'diff', 'diff%.6f' % math.degrees(delta - delta0), 1),
            grazing.psv)

    def _brackets(self, phase, event_r, delta, relative_angle):
        raypaths = self._raypaths
        deltas = [ray.compute_delta(phase, event_r) for ray in raypaths]
        if relative_angle:
            deltas = [
                to_relative_angle(d) if not math.isnan(d) else d
                for d in deltas]

        for i in range(len(raypaths) - 1):
            d1, d2 = deltas[i], deltas[i+1]
            if math.isnan(d1) or math.isnan(d2):
                continue

            if (d1 - delta) * (d2 - delta) > 0.0:
                continue

            yield raypaths[i], raypaths[i+1]

    def _delta(self, ray, phase, event_r, relative_angle):
        delta = ray.compute_delta(phase, event_r)
        if relative_angle and not math.isnan(delta):
            delta = to_relative_angle(delta)

        return delta

    def _misfit(self, ray, phase, event_r, delta, relative_angle):
        d = self._delta(ray, phase, event_r, relative_angle)
        return abs(d - delta) if not math.isnan(d) else float('inf')

    def _interpolated(self, phase, event_r, delta, relative_angle,
                      ray1, ray2):
        '''
        Raypath within a bracket reaching the target distance.

        A local polynomial gives a first guess of the ray parameter. If the
        ray found there misses the target, the ray parameter is solved for
        with Brent's method inside the bracket.

        :returns: :py:class:`~anisoray.raypath.Raypath` or ``None``
        '''

        for ray in (ray1, ray2):
            if self._misfit(ray, phase, event_r, delta, relative_angle) \
                    <= self.search_tolerance:
                return ray

        rays = {ray1.p: ray1, ray2.p: ray2}

        def get(p):
            if p not in rays:
                rays[p] = _compute(Raypath(p, self.kernel, self.mesh))

            return rays[p]

        center = get(0.5 * (ray1.p + ray2.p))
        if math.isnan(center.compute_delta(phase, event_r)):
            return None

        p = Raypath.interpolate_p(
            [ray1, center, ray2], phase, event_r, delta, relative_angle,
            degree=self.interpolation_degree)

        if -self.minimum_delta_p < p < 0.0:
            p = 0.0

        if ray1.p <= p <= ray2.p:
            ray = get(p)
            if self._misfit(ray, phase, event_r, delta, relative_angle) \
                    <= self.search_tolerance:
                return ray

        def residual(p):
            return self._delta(get(p), phase, event_r, relative_angle) \
                - delta

        try:
            p = brentq(residual, ray1.p, ray2.p, xtol=1e-6)
        except (ValueError, RuntimeError) as e:
            logger.debug(
                'No %s ray found between p = %g and %g s/rad: %s',
                phase, ray1.p, ray2.p, e)
            return None

        ray = get(p)
        if self._misfit(ray, phase, event_r, delta, relative_angle) \
                > self.search_tolerance:
            # a jump of the distance inside the bracket
            return None

        return ray

    def _time_at(self, ray, phase, event_r, delta, relative_angle):
        # dT/d(delta) = p
        d = ray.compute_delta(phase, event_r)
        sign = 1.0
        if relative_angle:
            if math.fmod(d, 2.0 * math.pi) > math.pi:
                sign = -1.0

            d = to_relative_angle(d)

        return ray.compute_t(phase, event_r) + sign * ray.p * (delta - d)

    def search_path(self, phase, event_r, delta, relative_angle=False):
        '''
        Raypaths of a phase arriving at a given distance.

        :param phase: :py:class:`~anisoray.phase.Phase`
        :param event_r: radius [km] of the source
        :param delta: epicentral distance [rad]
        :param relative_angle: if ``True``, distances of the raypaths are
            mapped to [0, pi] before comparison
        :returns: list of :py:class:`~anisoray.raypath.Raypath`, possibly
            empty
        '''
        check_target(delta, relative_angle)

        if phase.is_diffracted:
            raypath, _, delta0 = self._grazing(phase, event_r, relative_angle)
            if math.isnan(delta0) or delta < delta0:
                return []

            return [raypath]

        found = []
        for ray1, ray2 in self._brackets(
                phase, event_r, delta, relative_angle):

            ray = self._interpolated(
                phase, event_r, delta, relative_angle, ray1, ray2)

            if ray is not None and not any(
                    abs(ray.p - other.p) < 1e-9 for other in found):
                found.append(ray)

        return found

    def search_time(self, phase, event_r, delta, relative_angle=False):
        '''
        Travel times [s] of a phase arriving at a given distance.

        Same arguments as :py:meth:`search_path`.
        '''
        check_target(delta, relative_angle)

        if phase.is_diffracted:
            raypath, grazing, delta0 = self._grazing(
                phase, event_r, relative_angle)
            if math.isnan(delta0) or delta < delta0:
                return []

            t0 = raypath.compute_t(grazing, event_r)
            return [t0 + raypath.p * (delta - delta0)]

        return [
            self._time_at(ray, phase, event_r, delta, relative_angle)
            for ray in self.search_path(
                phase, event_r, delta, relative_angle)]

    def _neighbours(self, raypath):
        i = bisect.bisect_left(self._raypaths, raypath)
        j = bisect.bisect_right(self._raypaths, raypath)
        lower = self._raypaths[i-1] if i > 0 else None
        higher = self._raypaths[j] if j < len(self._raypaths) else None
        return lower, higher

    def _three_points(self, phase, event_r, delta, relative_angle, raypath):
        check_target(delta, relative_angle)
        lower, higher = self._neighbours(raypath)
        if lower is None or higher is None:
            return None

        for ray in (lower, raypath, higher):
            if math.isnan(ray.compute_delta(phase, event_r)):
                return None

        return [raypath, lower, higher]

    def travel_time_by_three_point_interpolate(
            self, phase, event_r, delta, relative_angle, raypath):
        '''
        Travel time [s] at a distance from a raypath and its lower and
        higher neighbours in the catalog.

        :returns: travel time or ``nan`` if any of the three raypaths lacks
            the phase
        '''
        raypaths = self._three_points(
            phase, event_r, delta, relative_angle, raypath)
        if raypaths is None:
            return float('nan')

        return Raypath.interpolate_t(
            raypaths, phase, event_r, delta, relative_angle, degree=1)

    def ray_parameter_by_three_point_interpolate(
            self, phase, event_r, delta, relative_angle, raypath):
        '''
        Ray parameter [s/rad] at a distance from a raypath and its lower and
        higher neighbours in the catalog.
        '''
        raypaths = self._three_points(
            phase, event_r, delta, relative_angle, raypath)
        if raypaths is None:
            return float('nan')

        return Raypath.interpolate_p(
            raypaths, phase, event_r, delta, relative_angle,
            degree=self.interpolation_degree)

    def arrivals(self, phase, event_r, delta, relative_angle=False):
        '''
        Arrivals of a phase at a given distance, sorted by travel time.

        :returns: list of :py:class:`Arrival` objects
        '''
        if phase.is_diffracted:
            diffracted = self.diffracted_phase(
                phase, event_r, delta, relative_angle)
            if diffracted is None:
                return []

            times = self.search_time(phase, event_r, delta, relative_angle)
            return [Arrival(
                diffracted, self.diffraction_raypath(phase), event_r, delta,
                times[0])]

        arrivals = []
        for raypath in self.search_path(
                phase, event_r, delta, relative_angle):

            t = self._time_at(
                raypath, phase, event_r, delta, relative_angle)

            arrivals.append(Arrival(phase, raypath, event_r, delta, t))

        arrivals.sort(key=lambda arrival: arrival.t)
        return arrivals

    # persistence

    def save(self, filename):
        '''
        Store the catalog, replacing the file atomically.
        '''
        util.ensuredirs(filename)
        blob = {
            'version': catalog_version,
            'key': self.key,
            'catalog': self}

        tmp = '%s.tmp.%i' % (filename, os.getpid())
        try:
            with open(tmp, 'wb') as f:
                pickle.dump(blob, f, protocol=2)

            os.replace(tmp, filename)
        finally:
            if op.exists(tmp):
                os.unlink(tmp)

        logger.debug('Saved raypath catalog to %s', filename)

    @classmethod
    def load(cls, filename, key=None):
        '''
        Load a stored catalog.

        :param key: expected catalog key
        :raises: :py:exc:`~anisoray.error.CatalogError` if the file cannot
            be read, was written by another version or has another key
        '''
        try:
            with open(filename, 'rb') as f:
                blob = pickle.load(f)

        except (OSError, EOFError, pickle.UnpicklingError, AttributeError,
                ImportError, ValueError, TypeError) as e:
            raise CatalogError('cannot read catalog %s: %s' % (filename, e))

        if not isinstance(blob, dict) \
                or not isinstance(blob.get('catalog'), cls):
            raise CatalogError('no catalog in %s' % filename)

        if blob.get('version') != catalog_version:
            raise CatalogError(
                'catalog %s has version %s, expected %s' % (
                    filename, blob.get('version'), catalog_version))

        catalog = blob['catalog']
        if blob.get('key') != catalog.key \
                or (key is not None and catalog.key != key):
            raise CatalogError('catalog %s has a different key' % filename)

        logger.debug('Loaded raypath catalog from %s', filename)
        return catalog

    @classmethod
    def get(cls, structure, mesh=None, delta_delta=None, cache_dir=None,
            nthreads=None):
        '''
        Get or build a catalog.

        :param structure: :py:class:`~anisoray.structure.VelocityStructure`
        :param mesh: :py:class:`~anisoray.mesh.ComputationalMesh`, by
            default :py:meth:`~anisoray.mesh.ComputationalMesh.simple`
        :param delta_delta: maximum distance [rad] between neighbouring
            raypaths, by default as configured
        :param cache_dir: directory of stored catalogs, by default as
            configured

        Returns the registered instance if an equal catalog has been
        requested before in this process. Otherwise a stored catalog is
        loaded or, if there is none usable, a new one is built and stored.
        '''
        conf = config.config()
        if mesh is None:
            mesh = ComputationalMesh.simple(structure)

        if delta_delta is None:
            delta_delta = math.radians(conf.delta_delta)

        if cache_dir is None:
            cache_dir = conf.cache_dir

        key = catalog_key(structure, mesh, delta_delta)
        with g_lock:
            if key in g_catalogs:
                return g_catalogs[key]

            filename = catalog_filename(cache_dir, key)
            catalog = None
            if op.exists(filename):
                try:
                    catalog = cls.load(filename, key)
                except CatalogError as e:
                    logger.warning('%s, rebuilding it' % e)

            if catalog is None:
                catalog = cls(structure, mesh, delta_delta, nthreads=nthreads)
                catalog.build()
                catalog.save(filename)

            g_catalogs[key] = catalog
            return catalog


def clear_registry():
    with g_lock:
        g_catalogs.clear()


def prem(**kwargs):
    return RaypathCatalog.get(smod.prem(), **kwargs)


def iprem(**kwargs):
    return RaypathCatalog.get(smod.iprem(), **kwargs)


def ak135(**kwargs):
    return RaypathCatalog.get(smod.ak135(), **kwargs)


__all__ = [
    'Arrival',
    'RaypathCatalog',
    'reference_phases',
    'catalog_version',
    'clear_registry',
    'prem',
    'iprem',
    'ak135']
