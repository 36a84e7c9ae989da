# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Ray theory integrands for transversely isotropic media after Woodhouse
(1981).

With ``x = p^2 / r^2``, the radial slowness of the three body wave types is
given by five coefficients depending on density and elastic moduli::

    S1 = rho/2 (1/L + 1/C)
    S2 = rho/2 (1/L - 1/C)
    S3 = (A C - F^2 - 2 L F) / (2 L C)
    S4 = S3^2 - A/C
    S5 = rho/(2 C) (1 + A/L) - S1 S3
    R  = sqrt(S4 x^2 + 2 S5 x + S2^2)

    q_tau(P)  = sqrt(S1 - S3 x - R)
    q_tau(SV) = sqrt(S1 - S3 x + R)
    q_tau(SH) = sqrt(rho/L - N x / L)

In the fluid outer core ``q_tau(K) = sqrt(rho/A - x)``. Integrands of
epicentral distance and travel time are ``q_delta = f_delta / q_tau`` and
``q_t = f_t / q_tau`` where the numerators ``f_delta`` and ``f_t`` are finite
at turning points.

Where a radicand is negative, the integrands are ``nan``.
'''

import logging
import threading
from collections import OrderedDict

import numpy as num

from pyrocko.guts import Object, Int

from . import config
from .phase import PhasePart


logger = logging.getLogger('anisoray.woodhouse')


class CoefficientCacheStats(Object):
    '''
    Information about cache state.
    '''
    nentries = Int.T(
        help='Number of radius arrays in the cache.')
    nhits = Int.T(
        help='Number of lookups answered from the cache.')
    nmisses = Int.T(
        help='Number of lookups which required computation.')


class CoefficientCache(object):
    '''
    Thread-safe cache of kernel coefficients.

    Entries are keyed by the content of the structure and the bytes of the
    radius array, so that kernels of equal structures share entries. Two
    threads asking for the same missing entry may both compute it; the result
    is the same.

    :param maxsize: number of entries kept, the least recently used entries
        are dropped first. By default as configured.
    '''

    def __init__(self, maxsize=None):
        if maxsize is None:
            maxsize = config.config().coefficient_cache_size

        if maxsize < 1:
            raise ValueError('cache size must be positive')

        self.maxsize = maxsize
        self._entries = OrderedDict()
        self._lock = threading.Lock()
        self._nhits = 0
        self._nmisses = 0

    def get(self, structure, r, compute):
        key = (structure.key, r.shape, r.tobytes())
        with self._lock:
            if key in self._entries:
                self._nhits += 1
                self._entries.move_to_end(key)
                return self._entries[key]

        value = compute(r)

        with self._lock:
            self._nmisses += 1
            value = self._entries.setdefault(key, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.maxsize:
                self._entries.popitem(last=False)

            return value

    def clear(self):
        with self._lock:
            self._entries.clear()

    def get_stats(self):
        with self._lock:
            return CoefficientCacheStats(
                nentries=len(self._entries),
                nhits=self._nhits,
                nmisses=self._nmisses)


def compute_coefficients(structure, r):
    '''
    Density, moduli and the coefficients S1 to S5 at radius ``r``.

    :returns: tuple ``(rho, A, C, F, L, N, S1, S2, S3, S4, S5)``
    '''

    rho, a, c, f, ll, n = structure.moduli(r)
    with num.errstate(divide='ignore', invalid='ignore'):
        s1 = rho / 2.0 * (1.0 / ll + 1.0 / c)
        s2 = rho / 2.0 * (1.0 / ll - 1.0 / c)
        s3 = (a * c - f * f - 2.0 * ll * f) / (2.0 * ll * c)
        s4 = s3 * s3 - a / c
        s5 = rho / (2.0 * c) * (1.0 + a / ll) - s1 * s3

    return rho, a, c, f, ll, n, s1, s2, s3, s4, s5


class Woodhouse1981(object):
    '''
    Integrand evaluation for a given structure.

    :param structure: :py:class:`~anisoray.structure.VelocityStructure`
    :param cache: :py:class:`CoefficientCache` to share coefficients between
        kernels. If ``None``, a private cache is used.

    All methods accept scalars or arrays of radii. Coefficients of radius
    arrays are memoized in the cache, scalars are evaluated directly.
    '''

    def __init__(self, structure, cache=None):
        self.structure = structure
        self.cache = cache if cache is not None else CoefficientCache()
        self._center = None

    def s_coefficients(self, r):
        r = num.asarray(r, dtype=float)
        if r.ndim == 0:
            return compute_coefficients(self.structure, r)

        return self.cache.get(
            self.structure, r,
            lambda r: compute_coefficients(self.structure, r))

    def center_coefficients(self):
        if self._center is None:
            self._center = compute_coefficients(self.structure, 0.0)

        return self._center

    def terms(self, phase_part, p, r, near_zero=False):
        '''
        Radicand of ``q_tau`` and the numerators of ``q_delta`` and ``q_t``.

        :param near_zero: use the coefficients at the center of the planet
            (for I and JV legs turning close to it)
        :returns: tuple ``(q_tau**2, f_delta, f_t)``
        '''

        r = num.asarray(r, dtype=float)
        if near_zero:
            rho, a, c, f, ll, n, s1, s2, s3, s4, s5 = \
                self.center_coefficients()
        else:
            rho, a, c, f, ll, n, s1, s2, s3, s4, s5 = self.s_coefficients(r)

        with num.errstate(divide='ignore', invalid='ignore'):
            pr2 = p / (r * r)
            x = p * pr2

            if phase_part is PhasePart.K:
                return rho / a - x, pr2, rho / a + x * 0.0

            if phase_part is PhasePart.SH:
                return (rho - n * x) / ll, pr2 * n / ll, rho / ll + x * 0.0

            rr = num.sqrt(s4 * x * x + 2.0 * s5 * x + s2 * s2)
            if phase_part in (PhasePart.P, PhasePart.I):
                return (
                    s1 - s3 * x - rr,
                    pr2 * (s3 + (s4 * x + s5) / rr),
                    s1 - (s5 * x + s2 * s2) / rr)

            elif phase_part in (PhasePart.SV, PhasePart.JV):
                return (
                    s1 - s3 * x + rr,
                    pr2 * (s3 - (s4 * x + s5) / rr),
                    s1 + (s5 * x + s2 * s2) / rr)

        raise ValueError('unknown phase part: %s' % phase_part)

    def q_tau_squared(self, phase_part, p, r, near_zero=False):
        return self.terms(phase_part, p, r, near_zero)[0]

    def q_tau(self, phase_part, p, r, near_zero=False):
        with num.errstate(invalid='ignore'):
            return num.sqrt(self.q_tau_squared(phase_part, p, r, near_zero))

    def q_delta_numerator(self, phase_part, p, r, near_zero=False):
        '''
        Product ``q_delta * q_tau``.
        '''
        return self.terms(phase_part, p, r, near_zero)[1]

    def q_t_numerator(self, phase_part, p, r, near_zero=False):
        '''
        Product ``q_t * q_tau``.
        '''
        return self.terms(phase_part, p, r, near_zero)[2]

    def q_delta(self, phase_part, p, r, near_zero=False):
        q2, fd, _ = self.terms(phase_part, p, r, near_zero)
        with num.errstate(invalid='ignore', divide='ignore'):
            return fd / num.sqrt(q2)

    def q_t(self, phase_part, p, r, near_zero=False):
        q2, _, ft = self.terms(phase_part, p, r, near_zero)
        with num.errstate(invalid='ignore', divide='ignore'):
            return ft / num.sqrt(q2)


__all__ = [
    'CoefficientCache',
    'CoefficientCacheStats',
    'Woodhouse1981',
    'compute_coefficients']
