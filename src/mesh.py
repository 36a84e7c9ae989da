# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Radius sampling used for the integration of raypaths.
'''

import math
import hashlib
import logging

import numpy as num

from . import config
from .error import InvalidArguments
from .phase import Partition


logger = logging.getLogger('anisoray.mesh')


class MeshLayer(object):
    '''
    Samples of one layer between two velocity boundaries.

    :param rmin, rmax: layer boundaries [km]
    :param radii: increasing sample radii, the first and last ones moved
        inward from the boundaries by the mesh epsilon
    '''

    def __init__(self, rmin, rmax, radii):
        self.rmin = rmin
        self.rmax = rmax
        self.radii = radii

    def __repr__(self):
        return 'MeshLayer(%g, %g, n=%i)' % (
            self.rmin, self.rmax, self.radii.size)


class ComputationalMesh(object):
    '''
    Radius samples per partition of a structure.

    :param structure: :py:class:`~anisoray.structure.VelocityStructure`
    :param inner_core_interval: maximum sample interval [km] in the inner
        core
    :param outer_core_interval: same for the outer core
    :param mantle_interval: same for the mantle
    :param integral_threshold: ratio of ``q_tau(p, r) / q_tau(0, r)`` below
        which intervals are integrated with the turning point rule
    :param eps: offset [km] of the samples next to velocity boundaries

    Every layer between two velocity boundaries is sampled separately so that
    no integrand is evaluated exactly at a discontinuity.
    '''

    def __init__(
            self, structure,
            inner_core_interval,
            outer_core_interval,
            mantle_interval,
            integral_threshold,
            eps=None):

        if eps is None:
            eps = config.config().mesh_eps

        for name, value in [
                ('inner_core_interval', inner_core_interval),
                ('outer_core_interval', outer_core_interval),
                ('mantle_interval', mantle_interval),
                ('eps', eps)]:

            if not value > 0.0:
                raise InvalidArguments(
                    '%s must be positive, got %g' % (name, value))

        if not 0.0 < integral_threshold < 1.0:
            raise InvalidArguments(
                'integral_threshold must be between 0 and 1, got %g'
                % integral_threshold)

        self.structure = structure
        self.inner_core_interval = float(inner_core_interval)
        self.outer_core_interval = float(outer_core_interval)
        self.mantle_interval = float(mantle_interval)
        self.integral_threshold = float(integral_threshold)
        self.eps = float(eps)

        self._layers = {}
        for partition, interval in [
                (Partition.INNER_CORE, self.inner_core_interval),
                (Partition.OUTER_CORE, self.outer_core_interval),
                (Partition.MANTLE, self.mantle_interval)]:

            self._layers[partition] = self._make_layers(partition, interval)

        self._radii = dict(
            (partition, num.concatenate([
                layer.radii for layer in self._layers[partition]]))
            for partition in self._layers)

        logger.debug(
            'Mesh for %s: %i samples', structure,
            sum(x.size for x in self._radii.values()))

    @classmethod
    def simple(cls, structure):
        '''
        Mesh with the intervals and threshold from the configuration.
        '''
        conf = config.config()
        return cls(
            structure,
            conf.inner_core_interval,
            conf.outer_core_interval,
            conf.mantle_interval,
            conf.integral_threshold,
            eps=conf.mesh_eps)

    def _make_layers(self, partition, interval):
        boundaries = self.structure.boundaries_in(partition)
        layers = []
        for rmin, rmax in zip(boundaries[:-1], boundaries[1:]):
            n = max(2, int(math.ceil((rmax - rmin) / interval)) + 1)
            radii = num.linspace(rmin, rmax, n)
            radii[0] += self.eps
            radii[-1] -= self.eps
            layers.append(MeshLayer(float(rmin), float(rmax), radii))

        return layers

    def layers(self, partition):
        return self._layers[partition]

    def radii(self, partition):
        '''
        All sample radii of a partition in increasing order.
        '''
        return self._radii[partition]

    def interval(self, partition):
        return {
            Partition.INNER_CORE: self.inner_core_interval,
            Partition.OUTER_CORE: self.outer_core_interval,
            Partition.MANTLE: self.mantle_interval}[partition]

    @property
    def key(self):
        h = hashlib.sha1()
        h.update(self.structure.key.encode('utf8'))
        h.update(repr((
            self.inner_core_interval,
            self.outer_core_interval,
            self.mantle_interval,
            self.integral_threshold,
            self.eps)).encode('utf8'))

        return h.hexdigest()

    def __eq__(self, other):
        return isinstance(other, ComputationalMesh) and self.key == other.key

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self.key)

    def __str__(self):
        return 'ComputationalMesh(%s, intervals=%g/%g/%g km, ' \
            'threshold=%g)' % (
                self.structure.name,
                self.inner_core_interval,
                self.outer_core_interval,
                self.mantle_interval,
                self.integral_threshold)


__all__ = ['MeshLayer', 'ComputationalMesh']
