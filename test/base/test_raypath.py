import math
import pickle
import unittest

import numpy as num

from pyrocko import util

from anisoray import structure as smod
from anisoray.phase import Phase, PhasePart
from anisoray.raypath import Raypath, polyfit_value, to_relative_angle
from anisoray.error import InvalidArguments

from .. import common


class RaypathTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.s = smod.iprem()
        cls.r = cls.s.earth_radius
        cls.rays = {}

    def ray(self, p):
        if p not in self.rays:
            self.rays[p] = common.raypath(self.s, p)

        return self.rays[p]

    def test_vertical(self):
        ray = self.ray(0.0)
        self.assertAlmostEqual(ray.compute_delta(Phase.PcP, self.r), 0.0)
        assert 505. < ray.compute_t(Phase.PcP, self.r) < 517.
        assert 925. < ray.compute_t(Phase.ScS, self.r) < 945.

        self.assertAlmostEqual(ray.compute_delta(Phase.PKIKP, self.r), math.pi)
        assert 1200. < ray.compute_t(Phase.PKIKP, self.r) < 1225.

        # no turning point in the mantle
        assert math.isnan(ray.compute_delta(Phase.P, self.r))
        assert math.isnan(ray.compute_t(Phase.P, self.r))
        assert not ray.exists(Phase.P, self.r)
        assert ray.exists(Phase.PcP, self.r)
        assert math.isnan(ray.turning_radius(PhasePart.P))

    def test_turning(self):
        ray = self.ray(500.)
        self.assertAlmostEqual(
            ray.turning_radius(PhasePart.P),
            self.s.turning_radius(PhasePart.P, 500.), delta=1e-3)

        assert ray.exists(Phase.P, self.r)
        assert not ray.exists(Phase.PcP, self.r)
        assert not ray.exists(Phase.PKIKP, self.r)
        assert ray.compute_delta(Phase.P, self.r) \
            < self.ray(450.).compute_delta(Phase.P, self.r)

    def test_slowness(self):
        t1, t2 = [
            self.ray(p).compute_t(Phase.P, self.r) for p in (480., 520.)]
        d1, d2 = [
            self.ray(p).compute_delta(Phase.P, self.r) for p in (480., 520.)]

        slope = (t2 - t1) / (d2 - d1)

        assert 480. < slope < 520.

    def test_multiple_legs(self):
        ray = self.ray(500.)
        d = ray.compute_delta(Phase.P, self.r)
        t = ray.compute_t(Phase.P, self.r)
        pp = Phase.create('PP')
        self.assertAlmostEqual(ray.compute_delta(pp, self.r), 2.0 * d)
        self.assertAlmostEqual(ray.compute_t(pp, self.r), 2.0 * t, 6)

        d410 = ray.compute_delta(Phase.create('P^410P'), self.r)
        assert d < d410 < 2.0 * d

    def test_source_depth(self):
        ray = self.ray(500.)
        d0 = ray.compute_delta(Phase.P, self.r)
        d1 = ray.compute_delta(Phase.P, self.r - 100.)
        assert d1 < d0

        # upgoing from the source
        dp = ray.compute_delta(Phase.p, self.r - 100.)
        self.assertAlmostEqual(d0, d1 + dp)
        self.assertEqual(ray.compute_delta(Phase.p, self.r), 0.0)

    def test_route(self):
        ray = self.ray(500.)
        d = ray.compute_delta(Phase.P, self.r)
        route = ray.get_route(Phase.P, self.r)
        self.assertEqual(route.shape[1], 2)
        num.testing.assert_allclose(route[0], [0.0, self.r], atol=1e-6)
        num.testing.assert_allclose(
            route[-1], [self.r*math.sin(d), self.r*math.cos(d)], atol=1e-6)

        radii = num.sqrt(num.sum(route**2, axis=1))
        self.assertAlmostEqual(
            radii.min(), ray.turning_radius(PhasePart.P), 3)

        assert ray.get_route(Phase.PcP, self.r) is None
        assert ray.get_route(Phase.P, self.r) is route

    def test_pickle(self):
        ray = self.ray(500.)
        d = ray.compute_delta(Phase.P, self.r)
        ray2 = pickle.loads(pickle.dumps(ray))
        assert ray2.kernel is None
        self.assertEqual(ray2, ray)
        self.assertEqual(ray2.compute_delta(Phase.P, self.r), d)

        with self.assertRaises(InvalidArguments):
            ray2.compute_delta(Phase.create('PPP'), self.r)

        with self.assertRaises(InvalidArguments):
            ray2.attach(common.kernel(smod.prem()))

        ray2.attach(common.kernel(self.s))
        self.assertAlmostEqual(
            ray2.compute_delta(Phase.create('PPP'), self.r), 3.0 * d)

    def test_ordering(self):
        rays = [self.ray(520.), self.ray(480.), self.ray(500.)]
        self.assertEqual([ray.p for ray in sorted(rays)], [480., 500., 520.])
        assert self.ray(480.) < self.ray(500.)
        assert 'not computed' in repr(
            Raypath(10., common.kernel(self.s), common.coarse_mesh(self.s)))

    def test_interpolation(self):
        rays = [self.ray(p) for p in (490., 500., 510.)]
        d = rays[1].compute_delta(Phase.P, self.r)
        t = rays[1].compute_t(Phase.P, self.r)
        self.assertAlmostEqual(
            Raypath.interpolate_p(rays, Phase.P, self.r, d), 500., 6)
        self.assertAlmostEqual(
            Raypath.interpolate_t(rays, Phase.P, self.r, d), t, 6)
        self.assertAlmostEqual(
            Raypath.interpolate_delta(rays, Phase.P, self.r, 500.), d, 9)

        # a ray without the phase spoils the fit
        rays.append(self.ray(0.0))
        assert math.isnan(
            Raypath.interpolate_t(rays, Phase.P, self.r, d))

    def test_polyfit_value(self):
        x = num.array([0., 1., 2., 3.])
        self.assertAlmostEqual(polyfit_value(x, x**2 + 1., 2, 1.5), 3.25)
        self.assertAlmostEqual(polyfit_value(x, 2.*x, 1, 10.), 20.)
        assert math.isnan(polyfit_value([0., 1., float('nan')],
                                        [1., 2., 3.], 2, 0.5))
        self.assertAlmostEqual(
            polyfit_value([1., 1., 2.], [2., 2., 4.], 2, 1.5), 3.0)
        self.assertEqual(polyfit_value([1., 1.], [5., 5.], 2, 3.), 5.0)

    def test_relative_angle(self):
        pi = math.pi
        for angle, expect in [
                (0., 0.),
                (0.5*pi, 0.5*pi),
                (pi, pi),
                (1.5*pi, 0.5*pi),
                (-0.5*pi, 0.5*pi),
                (2.*pi + 0.1, 0.1),
                (-2.*pi - 0.1, 0.1)]:

            self.assertAlmostEqual(to_relative_angle(angle), expect)

    def test_diffraction(self):
        p = float(self.s.horizontal_slowness_radius(
            PhasePart.P, self.s.cmb + 0.1))

        ray = common.raypath(self.s, p)
        self.assertAlmostEqual(
            ray.turning_radius(PhasePart.P), self.s.cmb + 0.1, 4)

        d = ray.compute_delta(Phase.Pdiff, self.r)
        t = ray.compute_t(Phase.Pdiff, self.r)
        self.assertAlmostEqual(d, ray.compute_delta(Phase.P, self.r))

        pdiff10 = Phase.create('Pdiff10')
        self.assertAlmostEqual(
            ray.compute_delta(pdiff10, self.r), d + math.radians(10.))
        self.assertAlmostEqual(
            ray.compute_t(pdiff10, self.r), t + p * math.radians(10.))

        route = ray.get_route(pdiff10, self.r)
        radii = num.sqrt(num.sum(route**2, axis=1))
        assert num.sum(num.abs(radii - self.s.cmb) < 1e-6) >= 11

        # turning far above the CMB
        assert math.isnan(self.ray(500.).compute_delta(Phase.Pdiff, self.r))

    def test_near_center(self):
        t0 = self.ray(0.0).compute_t(Phase.PKIKP, self.r)
        for p in (0.05, 1.0):
            ray = common.raypath(self.s, p)
            d = ray.compute_delta(Phase.PKIKP, self.r)
            assert abs(d - math.pi) < 0.01
            assert abs(ray.compute_t(Phase.PKIKP, self.r) - t0) < 1.0

        assert common.raypath(self.s, 0.05).turning_radius(PhasePart.I) < 1.0

    def test_invalid(self):
        k = common.kernel(self.s)
        m = common.coarse_mesh(self.s)
        with self.assertRaises(InvalidArguments):
            Raypath(-1., k, m)

        with self.assertRaises(InvalidArguments):
            Raypath(100., common.kernel(smod.prem()), m)

        ray = self.ray(500.)
        for event_r in (3000., 6400.):
            with self.assertRaises(InvalidArguments):
                ray.compute_delta(Phase.P, event_r)


if __name__ == '__main__':
    util.setup_logging('test_raypath', 'warning')
    unittest.main()
