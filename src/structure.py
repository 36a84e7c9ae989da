# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Radially layered, transversely isotropic velocity structures.

Units used throughout: radius in [km], density in [g/cm^3], elastic moduli in
[GPa], velocities in [km/s] and ray parameters in [s/rad].

The elastic moduli of a transversely isotropic medium with vertical symmetry
axis are derived from the velocities and the anisotropy parameter ``eta``::

    A = rho vph^2,  C = rho vpv^2,  L = rho vsv^2,  N = rho vsh^2,
    F = eta (A - 2 L)

Two kinds of structures are available: :py:class:`PolynomialStructure`,
where each layer is described by polynomials in normalized radius (PREM
style), and :py:class:`TabulatedStructure`, piecewise linear between nodes
(e.g. earth models in ``.nd`` format as read by :py:mod:`pyrocko.cake`).
'''

import math
import hashlib
import logging
import functools

import numpy as num
from scipy.optimize import brentq

from pyrocko import cake
from pyrocko.guts import Object, Float, String, List, load

from .error import InvalidArguments, InvalidStructure
from .phase import Partition, PhasePart, PassPoint


logger = logging.getLogger('anisoray.structure')

guts_prefix = 'anisoray'

# Threshold [%] of the relative parameter change at a velocity jump.
MAXIMUM_RATIO_OF_D_BOUNDARY = 1e-2

# Diffracted waves must turn within this distance [km] from the CMB.
D_BOUNDARY_ZONE = 0.5

JUMP_OFFSET = 1e-7

parameter_names = ('rho', 'vpv', 'vph', 'vsv', 'vsh', 'eta')


class PolynomialLayer(Object):
    '''
    Layer with parameters given as polynomials in normalized radius
    ``x = r / earth_radius``.

    Coefficients are given in order of increasing power. Missing horizontal
    velocities default to the vertical ones, missing ``eta`` to 1.
    '''

    rmin = Float.T(help='Bottom radius [km].')
    rmax = Float.T(help='Top radius [km].')
    rho = List.T(Float.T(), help='Density [g/cm^3].')
    vpv = List.T(Float.T(), help='Vertical P velocity [km/s].')
    vph = List.T(Float.T(), optional=True,
                 help='Horizontal P velocity [km/s].')
    vsv = List.T(Float.T(), help='Vertical S velocity [km/s].')
    vsh = List.T(Float.T(), optional=True,
                 help='Horizontal S velocity [km/s].')
    eta = List.T(Float.T(), optional=True, help='Anisotropy parameter.')

    def coefficients(self):
        return [
            self.rho,
            self.vpv,
            self.vph if self.vph is not None else self.vpv,
            self.vsv,
            self.vsh if self.vsh is not None else self.vsv,
            self.eta if self.eta is not None else [1.0]]


class PolynomialModel(Object):
    '''
    Description of a :py:class:`PolynomialStructure` in YAML files.
    '''

    name = String.T(optional=True)
    earth_radius = Float.T(default=6371.)
    icb = Float.T(help='Radius of the inner core boundary [km].')
    cmb = Float.T(help='Radius of the core-mantle boundary [km].')
    layers = List.T(PolynomialLayer.T())


def check_layers(rmins, rmaxs, earth_radius, cmb, icb):
    if len(rmins) == 0:
        raise InvalidStructure('structure has no layers')

    if not (0.0 < icb < cmb < earth_radius):
        raise InvalidStructure(
            'expected 0 < icb < cmb < earth radius, got icb=%g, cmb=%g, '
            'earth radius=%g' % (icb, cmb, earth_radius))

    if rmins[0] != 0.0 or abs(rmaxs[-1] - earth_radius) > 1e-6:
        raise InvalidStructure(
            'layers must cover the range from the center to the surface')

    for i in range(len(rmins)):
        if not rmins[i] < rmaxs[i]:
            raise InvalidStructure(
                'layer %i has non-positive thickness' % i)

        if i > 0 and abs(rmins[i] - rmaxs[i-1]) > 1e-6:
            raise InvalidStructure(
                'gap or overlap between layers at %g km' % rmins[i])

    for r in (icb, cmb):
        if num.min(num.abs(num.asarray(rmins) - r)) > 1e-6:
            raise InvalidStructure(
                'no layer boundary at %g km' % r)


class VelocityStructure(object):
    '''
    Base class for radially layered structures.

    Subclasses implement :py:meth:`parameters`, returning the tuple
    ``(rho, vpv, vph, vsv, vsh, eta)`` for an array of radii. On a layer
    boundary, the values of the layer above are returned.

    Structures compare equal if their defining parameters are equal
    (:py:attr:`key`).
    '''

    def __init__(self, rmins, rmaxs, earth_radius, cmb, icb, name=None):
        rmins = num.asarray(rmins, dtype=float)
        rmaxs = num.asarray(rmaxs, dtype=float)
        check_layers(rmins, rmaxs, earth_radius, cmb, icb)
        self._rmins = rmins
        self._rmaxs = rmaxs
        self.earth_radius = float(earth_radius)
        self.cmb = float(cmb)
        self.icb = float(icb)
        self.name = name
        self._key = None

    def parameters(self, r):
        raise NotImplementedError()

    def _content(self):
        raise NotImplementedError()

    @property
    def key(self):
        '''
        Hex digest identifying the structure by content.
        '''
        if self._key is None:
            h = hashlib.sha1()
            h.update(self.__class__.__name__.encode('utf8'))
            for x in (self.earth_radius, self.cmb, self.icb):
                h.update(repr(x).encode('utf8'))

            for arr in (self._rmins, self._rmaxs) + tuple(self._content()):
                h.update(num.ascontiguousarray(arr, dtype=float).tobytes())

            self._key = h.hexdigest()

        return self._key

    def __eq__(self, other):
        return isinstance(other, VelocityStructure) and self.key == other.key

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.key)

    def __str__(self):
        return '%s (%s, %i layers)' % (
            self.name or 'unnamed', self.__class__.__name__,
            self._rmins.size)

    def layer_index(self, r):
        idx = num.searchsorted(self._rmins, r, side='right') - 1
        return num.clip(idx, 0, self._rmins.size - 1)

    def moduli(self, r):
        '''
        Density and elastic moduli at radius ``r``.

        :returns: tuple ``(rho, A, C, F, L, N)``
        '''
        r = num.asarray(r, dtype=float)
        rho, vpv, vph, vsv, vsh, eta = self.parameters(r)
        a = rho * vph**2
        c = rho * vpv**2
        ll = rho * vsv**2
        n = rho * vsh**2
        f = eta * (a - 2.0*ll)
        return tuple(_out(x) for x in (rho, a, c, f, ll, n))

    def rho(self, r):
        return _out(self.parameters(num.asarray(r, dtype=float))[0])

    def a(self, r):
        return self.moduli(r)[1]

    def c(self, r):
        return self.moduli(r)[2]

    def f(self, r):
        return self.moduli(r)[3]

    def l(self, r):  # noqa
        return self.moduli(r)[4]

    def n(self, r):
        return self.moduli(r)[5]

    def vpv(self, r):
        return _out(self.parameters(num.asarray(r, dtype=float))[1])

    def vph(self, r):
        return _out(self.parameters(num.asarray(r, dtype=float))[2])

    def vsv(self, r):
        return _out(self.parameters(num.asarray(r, dtype=float))[3])

    def vsh(self, r):
        return _out(self.parameters(num.asarray(r, dtype=float))[4])

    def velocity_boundaries(self):
        '''
        Radii [km] of all layer boundaries, including center and surface.
        '''
        return num.unique(num.concatenate((
            self._rmins, self._rmaxs,
            [0.0, self.icb, self.cmb, self.earth_radius])))

    def partition_range(self, partition):
        if partition is Partition.INNER_CORE:
            return 0.0, self.icb
        elif partition is Partition.OUTER_CORE:
            return self.icb, self.cmb
        else:
            return self.cmb, self.earth_radius

    def boundaries_in(self, partition):
        rmin, rmax = self.partition_range(partition)
        b = self.velocity_boundaries()
        return b[num.logical_and(rmin <= b, b <= rmax)]

    def boundaries_in_inner_core(self):
        return self.boundaries_in(Partition.INNER_CORE)

    def boundaries_in_outer_core(self):
        return self.boundaries_in(Partition.OUTER_CORE)

    def boundaries_in_mantle(self):
        return self.boundaries_in(Partition.MANTLE)

    def partition_of(self, r):
        if not 0.0 <= r <= self.earth_radius:
            raise InvalidArguments(
                'radius %g km outside of the structure' % r)

        if r < self.icb:
            return Partition.INNER_CORE
        elif r < self.cmb:
            return Partition.OUTER_CORE
        else:
            return Partition.MANTLE

    def radius_of(self, pass_point, depth=None):
        '''
        Radius [km] of a pass point.

        :param depth: depth [km], required for :py:attr:`PassPoint.OTHER`
        '''
        if pass_point is PassPoint.EARTH_SURFACE:
            return self.earth_radius
        elif pass_point is PassPoint.CMB:
            return self.cmb
        elif pass_point is PassPoint.ICB:
            return self.icb
        elif pass_point is PassPoint.OTHER and depth is not None:
            r = self.earth_radius - depth
            if not 0.0 <= r <= self.earth_radius:
                raise InvalidArguments('depth %g km out of range' % depth)

            return r
        else:
            raise InvalidArguments(
                'radius of %s depends on the ray' % pass_point.name)

    def turning_modulus(self, phase_part, r):
        rho, a, _, _, ll, n = self.moduli(r)
        if phase_part in (PhasePart.P, PhasePart.I, PhasePart.K):
            m = a
        elif phase_part in (PhasePart.SV, PhasePart.JV):
            m = ll
        else:
            m = n

        return rho, m

    def horizontal_slowness_radius(self, phase_part, r):
        '''
        Ray parameter ``r sqrt(rho / M)`` of a wave turning at ``r``.
        '''
        rho, m = self.turning_modulus(phase_part, r)
        with num.errstate(divide='ignore', invalid='ignore'):
            return r * num.sqrt(rho / m)

    def turning_radius(self, phase_part, p, rmax=None):
        '''
        Radius [km] where a wave of given type and ray parameter turns.

        Returns the largest radius inside the partition of ``phase_part``
        (and not above ``rmax``) where ``p = r sqrt(rho / M)``, or ``nan``
        if there is none.
        '''

        rmin, rtop = self.partition_range(phase_part.partition)
        if rmax is not None:
            rtop = min(rtop, rmax)

        bounds = [b for b in self.velocity_boundaries() if rmin < b < rtop]
        edges = [rmin] + bounds + [rtop]

        def g(r):
            return float(self.horizontal_slowness_radius(phase_part, r)) - p

        for rbot, rtop_layer in reversed(list(zip(edges[:-1], edges[1:]))):
            n = max(2, int(math.ceil((rtop_layer - rbot) / 1.0)) + 1)
            rs = num.linspace(
                rbot + JUMP_OFFSET, rtop_layer - JUMP_OFFSET, n)[::-1]
            gs = self.horizontal_slowness_radius(phase_part, rs) - p
            for i in range(n-1):
                if gs[i] == 0.0:
                    return float(rs[i])

                if num.isfinite(gs[i]) and num.isfinite(gs[i+1]) \
                        and gs[i] * gs[i+1] < 0.0:
                    return brentq(g, rs[i+1], rs[i], xtol=1e-9)

            if gs[-1] == 0.0:
                return float(rs[-1])

        return float('nan')

    def is_jump(self, r):
        '''
        Check if any of the parameters is discontinuous at ``r``.
        '''
        if not 0.0 <= r <= self.earth_radius:
            raise InvalidArguments(
                'radius %g km outside of the structure' % r)

        if r == 0.0 or r == self.earth_radius:
            return False

        below = num.array(self.moduli(r - JUMP_OFFSET))
        above = num.array(self.moduli(r + JUMP_OFFSET))
        below = num.abs(below)
        above = num.abs(above)
        big = num.maximum(below, above)
        small = num.minimum(below, above)
        ratio = num.ones_like(big)
        mask = big > 0.0
        ratio[mask] = small[mask] / big[mask]
        return bool(num.any(
            ratio < 1.0 - MAXIMUM_RATIO_OF_D_BOUNDARY / 100.))

    def surface_limits(self):
        '''
        Largest ray parameters of P, SV and SH waves at the surface.
        '''
        r = self.earth_radius
        return tuple(
            float(self.horizontal_slowness_radius(pp, r))
            for pp in (PhasePart.P, PhasePart.SV, PhasePart.SH))


class PolynomialStructure(VelocityStructure):
    '''
    Structure defined by polynomials in normalized radius per layer.

    :param model: :py:class:`PolynomialModel` object
    '''

    def __init__(self, model):
        layers = sorted(model.layers, key=lambda layer: layer.rmin)
        VelocityStructure.__init__(
            self,
            [layer.rmin for layer in layers],
            [layer.rmax for layer in layers],
            model.earth_radius, model.cmb, model.icb,
            name=model.name)

        self.model = model
        self._coefs = []
        for ipar in range(len(parameter_names)):
            coefs = [layer.coefficients()[ipar] for layer in layers]
            ncoef = max(len(c) for c in coefs)
            arr = num.zeros((len(layers), ncoef))
            for ilayer, c in enumerate(coefs):
                arr[ilayer, :len(c)] = c

            self._coefs.append(arr)

    def _content(self):
        return self._coefs

    def parameters(self, r):
        r = num.asarray(r, dtype=float)
        idx = self.layer_index(r)
        x = r / self.earth_radius
        values = []
        for arr in self._coefs:
            c = arr[idx]
            v = num.zeros_like(x)
            for k in range(arr.shape[1]-1, -1, -1):
                v = v * x + c[..., k]

            values.append(v)

        return tuple(values)


class TabulatedStructure(VelocityStructure):
    '''
    Structure with parameters varying linearly within each layer.

    :param rmins, rmaxs: layer bottom and top radii [km]
    :param bottom_values, top_values: arrays of shape ``(nlayers, 6)`` with
        ``(rho, vpv, vph, vsv, vsh, eta)`` at the bottom and top of each
        layer
    '''

    def __init__(self, rmins, rmaxs, bottom_values, top_values,
                 earth_radius, cmb, icb, name=None):

        VelocityStructure.__init__(
            self, rmins, rmaxs, earth_radius, cmb, icb, name=name)

        self._bottom = num.asarray(bottom_values, dtype=float)
        self._top = num.asarray(top_values, dtype=float)
        if self._bottom.shape != (self._rmins.size, len(parameter_names)) \
                or self._top.shape != self._bottom.shape:
            raise InvalidStructure('bad shape of tabulated values')

    def _content(self):
        return [self._bottom, self._top]

    def parameters(self, r):
        r = num.asarray(r, dtype=float)
        idx = self.layer_index(r)
        rbot = self._rmins[idx]
        rtop = self._rmaxs[idx]
        t = ((r - rbot) / (rtop - rbot))[..., num.newaxis]
        values = self._bottom[idx] + t * (self._top[idx] - self._bottom[idx])
        return tuple(values[..., i] for i in range(len(parameter_names)))


def _out(x):
    if isinstance(x, num.ndarray) and x.ndim == 0:
        return float(x)

    return x


def from_cake_model(mod, name=None):
    '''
    Convert a :py:class:`pyrocko.cake.LayeredModel` to an isotropic
    :py:class:`TabulatedStructure`.
    '''

    layers = [
        layer for layer in mod.layers() if layer.zbot > layer.ztop]

    if not layers:
        raise InvalidStructure('earth model has no layers')

    radius_m = max(layer.zbot for layer in layers)

    try:
        cmb = (radius_m - mod.discontinuity('cmb').z) / 1000.
        icb = (radius_m - mod.discontinuity('icb').z) / 1000.
    except cake.DiscontinuityNotFound as e:
        raise InvalidStructure(
            'earth model lacks discontinuity "%s"' % e.depth_or_name)

    def values(m):
        vp = m.vp / 1000.
        vs = m.vs / 1000.
        return [m.rho / 1000., vp, vp, vs, vs, 1.0]

    rmins, rmaxs, bottom, top = [], [], [], []
    for layer in reversed(layers):
        rmins.append((radius_m - layer.zbot) / 1000.)
        rmaxs.append((radius_m - layer.ztop) / 1000.)
        bottom.append(values(layer.mbot))
        top.append(values(layer.mtop))

    rmins[0] = 0.0
    logger.debug('Converted cake model with %i layers', len(layers))
    return TabulatedStructure(
        rmins, rmaxs, bottom, top, radius_m / 1000., cmb, icb, name=name)


def load_tabulated(filename, name=None):
    '''
    Load an isotropic structure from a file in a format readable by
    :py:func:`pyrocko.cake.load_model`.
    '''
    return from_cake_model(cake.load_model(filename), name=name or filename)


def load_polynomial(filename):
    '''
    Load a :py:class:`PolynomialStructure` from a YAML file containing a
    :py:class:`PolynomialModel`.
    '''
    model = load(filename=filename)
    if not isinstance(model, PolynomialModel):
        raise InvalidStructure(
            'file %s does not contain a PolynomialModel' % filename)

    return PolynomialStructure(model)


# PREM (Dziewonski and Anderson, 1981) with the ocean replaced by the upper
# crust. The transversely isotropic layer ranges from 6151 to 6346.6 km.

g_prem_layers = [
    # rmin, rmax, rho, vp, vs
    (0.0, 1221.5,
     [13.0885, 0, -8.8381], [11.2622, 0, -6.3640], [3.6678, 0, -4.4475]),
    (1221.5, 3480.0,
     [12.5815, -1.2638, -3.6426, -5.5281],
     [11.0487, -4.0362, 4.8023, -13.5732], [0.0]),
    (3480.0, 3630.0,
     [7.9565, -6.4761, 5.5283, -3.0807],
     [15.3891, -5.3181, 5.5242, -2.5514],
     [6.9254, 1.4672, -2.0834, 0.9783]),
    (3630.0, 5600.0,
     [7.9565, -6.4761, 5.5283, -3.0807],
     [24.9520, -40.4673, 51.4832, -26.6419],
     [11.1671, -13.7818, 17.4575, -9.2777]),
    (5600.0, 5701.0,
     [7.9565, -6.4761, 5.5283, -3.0807],
     [29.2766, -23.6027, 5.5242, -2.5514],
     [22.3459, -17.2473, -2.0834, 0.9783]),
    (5701.0, 5771.0,
     [5.3197, -1.4836], [19.0957, -9.8672], [9.9839, -4.9324]),
    (5771.0, 5971.0,
     [11.2494, -8.0298], [39.7027, -32.6166], [22.3512, -18.5856]),
    (5971.0, 6151.0,
     [7.1089, -3.8045], [20.3926, -12.2569], [8.9496, -4.4597]),
    (6151.0, 6346.6,
     [2.6910, 0.6924], [4.1875, 3.9382], [2.1519, 2.3481]),
    (6346.6, 6356.0, [2.9], [6.8], [3.9]),
    (6356.0, 6371.0, [2.6], [5.8], [3.2])]

g_prem_anisotropic_layer = dict(
    vpv=[0.8317, 7.2180],
    vph=[3.5908, 4.6172],
    vsv=[5.8582, -1.4678],
    vsh=[-1.0839, 5.7176],
    eta=[3.3687, -2.4778])


def prem_model(anisotropic=True):
    layers = []
    for rmin, rmax, rho, vp, vs in g_prem_layers:
        layer = PolynomialLayer(
            rmin=rmin, rmax=rmax, rho=rho, vpv=vp, vsv=vs)

        if anisotropic and rmin == 6151.0:
            for k, v in g_prem_anisotropic_layer.items():
                setattr(layer, k, v)

        layers.append(layer)

    return PolynomialModel(
        name='prem' if anisotropic else 'iprem',
        earth_radius=6371.0,
        icb=1221.5,
        cmb=3480.0,
        layers=layers)


@functools.lru_cache(maxsize=None)
def prem():
    '''
    Transversely isotropic PREM.
    '''
    return PolynomialStructure(prem_model(anisotropic=True))


@functools.lru_cache(maxsize=None)
def iprem():
    '''
    Isotropic PREM.
    '''
    return PolynomialStructure(prem_model(anisotropic=False))


@functools.lru_cache(maxsize=None)
def ak135():
    '''
    AK135 as distributed with :py:mod:`pyrocko.cake`.
    '''
    return from_cake_model(
        cake.load_model('ak135-f-continental.m'), name='ak135')


builtin_structures = {
    'prem': prem,
    'iprem': iprem,
    'ak135': ak135}


def get_structure(name_or_filename):
    '''
    Get a built-in structure by name or load it from a file.

    Files with extension ``.yaml`` or ``.yml`` are read as
    :py:class:`PolynomialModel`, anything else with
    :py:func:`pyrocko.cake.load_model`.
    '''
    if name_or_filename in builtin_structures:
        return builtin_structures[name_or_filename]()

    if name_or_filename.endswith(('.yaml', '.yml')):
        return load_polynomial(name_or_filename)

    return load_tabulated(name_or_filename)


__all__ = [
    'MAXIMUM_RATIO_OF_D_BOUNDARY',
    'D_BOUNDARY_ZONE',
    'PolynomialLayer',
    'PolynomialModel',
    'VelocityStructure',
    'PolynomialStructure',
    'TabulatedStructure',
    'from_cake_model',
    'load_tabulated',
    'load_polynomial',
    'prem',
    'iprem',
    'ak135',
    'builtin_structures',
    'get_structure']
