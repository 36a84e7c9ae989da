# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Integration of epicentral distance and travel time for a fixed ray
parameter.

A :py:class:`Raypath` integrates the Woodhouse (1981) integrands over the
layers of a :py:class:`~anisoray.mesh.ComputationalMesh` once, for all wave
types. Distances and travel times of any phase are then assembled from these
layer integrals, leg by leg::

    from anisoray import structure, woodhouse, mesh, raypath, phase

    s = structure.prem()
    m = mesh.ComputationalMesh.simple(s)
    ray = raypath.Raypath(500., woodhouse.Woodhouse1981(s), m)
    ray.compute()
    delta = ray.compute_delta(phase.Phase.P, s.earth_radius)  # [rad]
    t = ray.compute_t(phase.Phase.P, s.earth_radius)  # [s]

A phase which does not exist for the ray parameter yields ``nan``.
'''

import math
import logging
import threading
from collections import namedtuple

import numpy as num
from scipy.optimize import brentq

from . import config
from .error import InvalidArguments, InternalConsistencyError
from .phase import (
    PhasePart, Partition, PassPoint, GeneralPart, LocatedDiffracted, Located,
    Arbitrary, check_path_part)
from .structure import D_BOUNDARY_ZONE


logger = logging.getLogger('anisoray.raypath')

NEAR_ZERO_SAMPLES = 64

# bottom of the region of a wave type connected to the top of its partition
TURNING = 'turning'
JUMP = 'jump'
PARTITION = 'partition'

nan = float('nan')


def to_relative_angle(angle):
    '''
    Map an angle [rad] to the range [0, pi].
    '''
    angle = math.fmod(angle, 2.0 * math.pi)
    if angle < 0.0:
        angle += 2.0 * math.pi

    return angle if angle <= math.pi else 2.0 * math.pi - angle


def integrate_intervals(r, q2, fd, ft, q02, threshold):
    '''
    Integrals of ``q_delta`` and ``q_t`` over the intervals between radii
    ``r``.

    Intervals where ``q_tau(p, r) / q_tau(0, r)`` falls below ``threshold``
    are integrated with the turning point rule ``h (f_a + f_b) / (q_a +
    q_b)``, exact for a radicand linear in ``r`` and finite where ``q_tau``
    vanishes. The trapezoidal rule is used elsewhere.
    '''

    with num.errstate(divide='ignore', invalid='ignore'):
        qt = num.sqrt(num.maximum(q2, 0.0))
        ratio = qt / num.sqrt(q02)
        h = num.diff(r)
        qsum = qt[:-1] + qt[1:]
        turning = num.minimum(ratio[:-1], ratio[1:]) < threshold

        d = num.where(
            turning,
            h * (fd[:-1] + fd[1:]) / qsum,
            h * 0.5 * (fd[:-1] / qt[:-1] + fd[1:] / qt[1:]))

        t = num.where(
            turning,
            h * (ft[:-1] + ft[1:]) / qsum,
            h * 0.5 * (ft[:-1] / qt[:-1] + ft[1:] / qt[1:]))

    return d, t


LayerNodes = namedtuple(
    'LayerNodes', 'r q2 fd ft q02 delta t')


class LegTable(object):
    '''
    Layer integrals of one wave type.

    :ivar r_bottom: lowest radius [km] reached by the wave from the top of
        its partition, ``nan`` if it cannot propagate there at all
    :ivar kind: how the region ends at ``r_bottom``: ``'turning'``,
        ``'jump'`` (total reflection at a velocity jump) or ``'partition'``
        (the bottom of the partition is reached)
    :ivar delta, t: integrals of each mesh layer from ``r_bottom`` or the
        layer bottom up to the layer top
    :ivar near_zero: ``(r_k, delta, t)`` of the innermost interval of a wave
        turning close to the center, otherwise ``None``
    '''

    def __init__(self, phase_part, nlayers):
        self.phase_part = phase_part
        self.r_bottom = nan
        self.kind = None
        self.delta = num.full(nlayers, nan)
        self.t = num.full(nlayers, nan)
        self.near_zero = None

    @property
    def exists(self):
        return not math.isnan(self.r_bottom)


class Raypath(object):
    '''
    Ray with a fixed ray parameter.

    :param p: ray parameter [s/rad]
    :param kernel: :py:class:`~anisoray.woodhouse.Woodhouse1981`
    :param mesh: :py:class:`~anisoray.mesh.ComputationalMesh`

    Raypaths compare and sort by their ray parameter. Pickled raypaths lose
    their kernel, it has to be attached with :py:meth:`attach` after
    unpickling.
    '''

    def __init__(self, p, kernel, mesh):
        if not p >= 0.0:
            raise InvalidArguments(
                'ray parameter must be non-negative, got %g' % p)

        if kernel.structure != mesh.structure:
            raise InvalidArguments(
                'kernel and mesh are for different structures')

        self.p = float(p)
        self.kernel = kernel
        self.mesh = mesh
        self._tables = None
        self._results = {}
        self._routes = {}
        self._partials = {}
        self._lock = threading.Lock()

    @property
    def structure(self):
        return self.mesh.structure

    @property
    def is_computed(self):
        return self._tables is not None

    def attach(self, kernel):
        if kernel.structure != self.mesh.structure:
            raise InvalidArguments('kernel is for a different structure')

        self.kernel = kernel

    def __getstate__(self):
        state = self.__dict__.copy()
        for k in ('kernel', '_lock', '_routes', '_partials'):
            del state[k]

        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self.kernel = None
        self._lock = threading.Lock()
        self._routes = {}
        self._partials = {}

    def __eq__(self, other):
        return isinstance(other, Raypath) and self.p == other.p

    def __ne__(self, other):
        return not self.__eq__(other)

    def __lt__(self, other):
        return self.p < other.p

    def __le__(self, other):
        return self.p <= other.p

    def __gt__(self, other):
        return self.p > other.p

    def __ge__(self, other):
        return self.p >= other.p

    def __hash__(self):
        return hash(self.p)

    def __repr__(self):
        return 'Raypath(p=%g%s)' % (
            self.p, '' if self.is_computed else ', not computed')

    # integration

    def compute(self):
        '''
        Integrate all wave types over the mesh.

        Calling it again has no effect.
        '''
        with self._lock:
            if self._tables is not None:
                return

            self._check_kernel()
            near_zero_radius = config.config().near_zero_radius
            tables = {}
            for phase_part in PhasePart:
                tables[phase_part] = self._make_table(
                    phase_part, near_zero_radius)

            self._tables = tables

    def _check_kernel(self):
        if self.kernel is None:
            raise InvalidArguments(
                'raypath has no kernel attached (unpickled?)')

    def _make_table(self, phase_part, near_zero_radius):
        partition = phase_part.partition
        layers = self.mesh.layers(partition)
        table = LegTable(phase_part, len(layers))
        radii = self.mesh.radii(partition)
        q2 = self.kernel.q_tau_squared(phase_part, self.p, radii)
        with num.errstate(invalid='ignore'):
            ok = q2 >= 0.0

        if not ok[-1]:
            return table

        bad = num.nonzero(~ok)[0]
        lo = bad[-1] + 1 if bad.size else 0

        if lo == 0:
            table.kind = PARTITION
            table.r_bottom = float(radii[0])

        elif q2[lo] == 0.0:
            table.kind = TURNING
            table.r_bottom = float(radii[lo])

        elif self._across_boundary(partition, radii[lo-1], radii[lo]):
            table.kind = JUMP
            table.r_bottom = float(radii[lo])

        else:
            table.kind = TURNING
            table.r_bottom = self._find_turning(
                phase_part, radii[lo-1], radii[lo])

        if table.kind == TURNING \
                and phase_part in (PhasePart.I, PhasePart.JV) \
                and table.r_bottom < near_zero_radius:

            nz = self._near_zero_integral(phase_part, float(radii[lo]))
            if nz is not None:
                r_t, r_k, d, t = nz
                table.r_bottom = r_t
                table.near_zero = (r_k, d, t)

        for ilayer in range(len(layers)):
            nodes = self._layer_nodes(table, ilayer)
            if nodes is not None:
                table.delta[ilayer] = num.sum(nodes.delta)
                table.t[ilayer] = num.sum(nodes.t)

        return table

    def _across_boundary(self, partition, ra, rb):
        b = self.structure.boundaries_in(partition)
        return bool(num.any(num.logical_and(ra < b, b < rb)))

    def _find_turning(self, phase_part, ra, rb):
        def f(r):
            v = float(self.kernel.q_tau_squared(phase_part, self.p, r))
            return v if not math.isnan(v) else -1.0

        return brentq(f, float(ra), float(rb), xtol=1e-10)

    def _near_zero_integral(self, phase_part, r_k):
        '''
        Innermost interval of a wave turning close to the center, evaluated
        with the coefficients at the center.

        The distance is integrated in ``y = p / r``, where its integrand is
        smooth, the travel time follows from ``t = p delta + tau``.
        '''

        p = self.p
        kernel = self.kernel

        def q2y(y):
            v = float(kernel.q_tau_squared(
                phase_part, p, p / y, near_zero=True))
            return v if not math.isnan(v) else -1.0

        y_k = p / r_k
        if not q2y(y_k) > 0.0:
            return None

        y_hi = 2.0 * y_k
        for _ in range(200):
            if not q2y(y_hi) > 0.0:
                break
            y_hi *= 2.0
        else:
            return None

        y_t = brentq(q2y, y_k, y_hi, xtol=y_k*1e-12)

        ys = num.linspace(y_k, y_t, NEAR_ZERO_SAMPLES)
        rs = p / ys
        q2, fd, _ = kernel.terms(phase_part, p, rs, near_zero=True)
        q2 = num.array(q2, dtype=float)
        q2[-1] = 0.0
        with num.errstate(divide='ignore', invalid='ignore'):
            qt = num.sqrt(num.maximum(q2, 0.0))
            gd = fd * rs**2 / p
            d = num.sum(
                num.diff(ys) * (gd[:-1] + gd[1:]) / (qt[:-1] + qt[1:]))
            tau = num.sum(-num.diff(rs) * 0.5 * (qt[:-1] + qt[1:]))

        return float(rs[-1]), r_k, float(d), float(p * d + tau)

    def _layer_nodes(self, table, ilayer):
        '''
        Admissible nodes of a mesh layer with their interval integrals.
        '''

        if not table.exists:
            return None

        phase_part = table.phase_part
        layer = self.mesh.layers(phase_part.partition)[ilayer]
        radii = layer.radii
        if table.r_bottom > radii[-1]:
            return None

        q2, fd, ft = self.kernel.terms(phase_part, self.p, radii)
        q02 = self.kernel.q_tau_squared(phase_part, 0.0, radii)
        sel = radii >= table.r_bottom
        r = radii[sel]
        q2, fd, ft, q02 = q2[sel], fd[sel], ft[sel], q02[sel]

        if table.kind == TURNING and radii[0] < table.r_bottom \
                and (r.size == 0 or r[0] > table.r_bottom):

            r_t = table.r_bottom
            q2_t, fd_t, ft_t = self.kernel.terms(phase_part, self.p, r_t)
            q02_t = self.kernel.q_tau_squared(phase_part, 0.0, r_t)
            r = num.concatenate(([r_t], r))
            q2 = num.concatenate(([0.0], q2))
            fd = num.concatenate(([fd_t], fd))
            ft = num.concatenate(([ft_t], ft))
            q02 = num.concatenate(([q02_t], q02))

        if r.size < 2:
            return LayerNodes(r, q2, fd, ft, q02, num.zeros(0), num.zeros(0))

        d, t = integrate_intervals(
            r, q2, fd, ft, q02, self.mesh.integral_threshold)

        if table.near_zero is not None and r[0] == table.r_bottom:
            r_k, d_nz, t_nz = table.near_zero
            if r[1] == r_k:
                d[0] = d_nz
                t[0] = t_nz

        return LayerNodes(r, q2, fd, ft, q02, d, t)

    def _table(self, phase_part):
        if self._tables is None:
            self.compute()

        return self._tables[phase_part]

    def _layer_containing(self, partition, r):
        layers = self.mesh.layers(partition)
        for ilayer in range(len(layers)-1, -1, -1):
            if layers[ilayer].rmin <= r:
                return ilayer

        return 0

    def _partial(self, table, ilayer, r):
        key = (table.phase_part, ilayer, r)
        if key in self._partials:
            return self._partials[key]

        nodes = self._layer_nodes(table, ilayer)
        if nodes is None or nodes.r.size == 0:
            result = nan, nan
        elif r <= nodes.r[0]:
            result = float(num.sum(nodes.delta)), float(num.sum(nodes.t))
        elif r >= nodes.r[-1]:
            result = 0.0, 0.0
        else:
            j = int(num.searchsorted(nodes.r, r, side='right'))
            q2, fd, ft = self.kernel.terms(table.phase_part, self.p, r)
            q02 = self.kernel.q_tau_squared(table.phase_part, 0.0, r)
            d0, t0 = integrate_intervals(
                num.array([r, nodes.r[j]]),
                num.array([q2, nodes.q2[j]]),
                num.array([fd, nodes.fd[j]]),
                num.array([ft, nodes.ft[j]]),
                num.array([q02, nodes.q02[j]]),
                self.mesh.integral_threshold)

            result = (
                float(d0[0] + num.sum(nodes.delta[j:])),
                float(t0[0] + num.sum(nodes.t[j:])))

        self._partials[key] = result
        return result

    def _from_top(self, table, r):
        '''
        Integrals from radius ``r`` to the top of the partition.
        '''
        if not table.exists:
            return nan, nan

        partition = table.phase_part.partition
        radii = self.mesh.radii(partition)
        if r < table.r_bottom:
            if table.r_bottom - r > 2.0 * self.mesh.eps \
                    or table.kind == TURNING:
                return nan, nan

        r = min(max(r, table.r_bottom, radii[0]), radii[-1])
        ilayer = self._layer_containing(partition, r)
        d, t = self._partial(table, ilayer, r)
        return (
            d + float(num.sum(table.delta[ilayer+1:])),
            t + float(num.sum(table.t[ilayer+1:])))

    # legs

    def _check_event_radius(self, event_r):
        s = self.structure
        if not s.cmb < event_r <= s.earth_radius:
            raise InvalidArguments(
                'event radius must be in (%g, %g] km, got %g' % (
                    s.cmb, s.earth_radius, event_r))

    def _radius(self, point, depth, partition, event_r):
        s = self.structure
        if point is PassPoint.SEISMIC_SOURCE:
            r = event_r
        else:
            r = s.radius_of(point, depth)

        rmin, rmax = s.partition_range(partition)
        if not rmin <= r <= rmax:
            raise InvalidArguments(
                '%s at %g km is outside of the %s' % (
                    point.name, r, partition.name.lower().replace('_', ' ')))

        return r

    def _leg_range(self, leg, event_r, diffracted):
        '''
        Radii ``(r_in, r_out)`` of a leg or ``None`` if the ray does not
        support it.
        '''

        table = self._table(leg.phase_part)
        if not table.exists:
            return None

        partition = leg.phase_part.partition
        r_out = self._radius(
            leg.outer_point, leg.outer_depth, partition, event_r)

        if leg.inner_point is PassPoint.BOUNCE_POINT:
            if diffracted:
                if abs(table.r_bottom - self.structure.cmb) \
                        > D_BOUNDARY_ZONE:
                    return None

            elif table.kind == PARTITION \
                    and partition is not Partition.INNER_CORE:
                return None

            r_in = table.r_bottom
        else:
            r_in = self._radius(
                leg.inner_point, leg.inner_depth, partition, event_r)

        if r_in > r_out:
            return None

        return r_in, r_out

    def _leg(self, leg, event_r, diffracted):
        rng = self._leg_range(leg, event_r, diffracted)
        if rng is None:
            return nan, nan

        r_in, r_out = rng
        table = self._table(leg.phase_part)
        d_in, t_in = self._from_top(table, r_in)
        d_out, t_out = self._from_top(table, r_out)
        d = d_in - d_out
        t = t_in - t_out
        if leg.inner_point is PassPoint.BOUNCE_POINT \
                and table.kind == PARTITION \
                and leg.phase_part.partition is Partition.INNER_CORE:
            # through the center
            d += 0.5 * math.pi

        return d, t

    def _evaluate(self, phase, event_r):
        key = (phase, event_r)
        if key in self._results:
            return self._results[key]

        self._check_kernel()
        self._check_event_radius(event_r)
        diffracted = phase.is_diffracted
        delta = 0.0
        t = 0.0
        for part in phase.parts:
            check_path_part(part)
            if isinstance(part, GeneralPart):
                d_leg, t_leg = self._leg(part, event_r, diffracted)
                delta += d_leg
                t += t_leg
            elif isinstance(part, LocatedDiffracted):
                delta += part.angle
                t += self.p * part.angle
            elif not isinstance(part, (Located, Arbitrary)):
                raise InternalConsistencyError(
                    'unexpected path part: %r' % (part,))

            if math.isnan(delta) or math.isnan(t):
                delta = t = nan
                break

        self._results[key] = delta, t
        return delta, t

    def compute_delta(self, phase, event_r):
        '''
        Epicentral distance [rad] of a phase, ``nan`` if it does not exist.

        :param phase: :py:class:`~anisoray.phase.Phase`
        :param event_r: radius [km] of the source
        '''
        return self._evaluate(phase, event_r)[0]

    def compute_t(self, phase, event_r):
        '''
        Travel time [s] of a phase, ``nan`` if it does not exist.
        '''
        return self._evaluate(phase, event_r)[1]

    def exists(self, phase, event_r):
        return not math.isnan(self.compute_delta(phase, event_r))

    def turning_radius(self, phase_part):
        '''
        Radius [km] where the wave type turns or is totally reflected,
        ``nan`` if it does not turn in its partition.
        '''
        table = self._table(phase_part)
        if table.kind in (TURNING, JUMP):
            return table.r_bottom

        return nan

    # geometry

    def _leg_profile(self, leg, event_r, diffracted):
        rng = self._leg_range(leg, event_r, diffracted)
        if rng is None:
            return None

        r_in, r_out = rng
        table = self._table(leg.phase_part)
        partition = leg.phase_part.partition
        d_in, _ = self._from_top(table, r_in)
        rs = [r_in]
        ds = [0.0]
        for ilayer, layer in enumerate(self.mesh.layers(partition)):
            nodes = self._layer_nodes(table, ilayer)
            if nodes is None:
                continue

            above = float(num.sum(table.delta[ilayer+1:]))
            from_top = above + num.concatenate((
                num.cumsum(nodes.delta[::-1])[::-1], [0.0]))
            for r, d in zip(nodes.r, from_top):
                if r_in < r < r_out:
                    rs.append(float(r))
                    ds.append(d_in - d)

        d_out, _ = self._from_top(table, r_out)
        rs.append(r_out)
        ds.append(d_in - d_out)
        order = num.argsort(rs)
        return num.array(rs)[order], num.array(ds)[order]

    def get_route(self, phase, event_r):
        '''
        Geometry of a phase in the great circle plane.

        :returns: array of shape ``(n, 2)`` with ``x, y`` [km] of points
            along the ray, the source at ``(0, event_r)``, or ``None`` if
            the phase does not exist
        '''

        key = (phase, event_r)
        if key in self._routes:
            return self._routes[key]

        if math.isnan(self.compute_delta(phase, event_r)):
            self._routes[key] = None
            return None

        diffracted = phase.is_diffracted
        angles = []
        radii = []
        delta = 0.0
        for part in phase.parts:
            if isinstance(part, GeneralPart):
                rs, ds = self._leg_profile(part, event_r, diffracted)
                if part.downward:
                    rs = rs[::-1]
                    ds = ds[-1] - ds[::-1]

                angles.extend(delta + ds)
                radii.extend(rs)
                delta += ds[-1]
                if part.inner_point is PassPoint.BOUNCE_POINT \
                        and part.downward \
                        and self._table(part.phase_part).kind == PARTITION \
                        and part.phase_part.partition \
                        is Partition.INNER_CORE:
                    delta += math.pi

            elif isinstance(part, LocatedDiffracted):
                n = max(2, int(math.ceil(math.degrees(part.angle))) + 1)
                phis = num.linspace(0.0, part.angle, n)
                angles.extend(delta + phis)
                radii.extend([self.structure.cmb] * n)
                delta += part.angle

        angles = num.array(angles)
        radii = num.array(radii)
        route = num.vstack((
            radii * num.sin(angles), radii * num.cos(angles))).T

        self._routes[key] = route
        return route

    # three point interpolation

    @staticmethod
    def _deltas(raypaths, phase, event_r, relative_angle):
        deltas = num.array([
            ray.compute_delta(phase, event_r) for ray in raypaths])
        if relative_angle:
            deltas = num.array([to_relative_angle(d) for d in deltas])

        return deltas

    @staticmethod
    def interpolate_p(raypaths, phase, event_r, delta, relative_angle=False,
                      degree=2):
        '''
        Ray parameter for an epicentral distance from a polynomial fit of
        ``p(delta)`` through neighbouring raypaths.
        '''
        deltas = Raypath._deltas(raypaths, phase, event_r, relative_angle)
        ps = num.array([ray.p for ray in raypaths])
        return polyfit_value(deltas, ps, degree, delta)

    @staticmethod
    def interpolate_t(raypaths, phase, event_r, delta, relative_angle=False,
                      degree=None):
        '''
        Travel time for an epicentral distance from a polynomial fit of
        ``T(delta)`` through neighbouring raypaths. By default, the degree is
        one less than the number of raypaths.
        '''
        deltas = Raypath._deltas(raypaths, phase, event_r, relative_angle)
        ts = num.array([ray.compute_t(phase, event_r) for ray in raypaths])
        if degree is None:
            degree = len(raypaths) - 1

        return polyfit_value(deltas, ts, degree, delta)

    @staticmethod
    def interpolate_delta(raypaths, phase, event_r, p, relative_angle=False,
                          degree=2):
        '''
        Epicentral distance for a ray parameter from a polynomial fit of
        ``delta(p)`` through neighbouring raypaths.
        '''
        deltas = Raypath._deltas(raypaths, phase, event_r, relative_angle)
        ps = num.array([ray.p for ray in raypaths])
        return polyfit_value(ps, deltas, degree, p)


def polyfit_value(x, y, degree, x0):
    '''
    Value at ``x0`` of a least squares polynomial through ``(x, y)``.

    Duplicate abscissae are dropped and the degree is reduced to what the
    remaining points support. Returns ``nan`` if any input is ``nan``.
    '''
    x = num.asarray(x, dtype=float)
    y = num.asarray(y, dtype=float)
    if not (num.all(num.isfinite(x)) and num.all(num.isfinite(y))):
        return nan

    x, idx = num.unique(x, return_index=True)
    y = y[idx]
    if x.size == 1:
        return float(y[0])

    degree = min(degree, x.size - 1)
    xc = x.mean()
    coefs = num.polyfit(x - xc, y, degree)
    return float(num.polyval(coefs, x0 - xc))


__all__ = [
    'Raypath',
    'LegTable',
    'integrate_intervals',
    'polyfit_value',
    'to_relative_angle']
