import unittest

import numpy as num

from pyrocko import util

from anisoray import config, structure as smod
from anisoray.phase import PhasePart
from anisoray.woodhouse import Woodhouse1981, CoefficientCache


def assert_close(a, b, rtol=1e-9):
    num.testing.assert_allclose(a, b, rtol=rtol)


class WoodhouseTestCase(unittest.TestCase):

    def test_isotropic_limit(self):
        s = smod.iprem()
        k = Woodhouse1981(s)
        r = num.linspace(4500., 6000., 16)
        p = 300.
        x = p**2 / r**2
        rho, a, _, _, ll, n = s.moduli(r)

        assert_close(k.q_tau_squared(PhasePart.P, p, r), rho / a - x)
        assert_close(k.q_tau_squared(PhasePart.SV, p, r), rho / ll - x)
        assert_close(k.q_tau_squared(PhasePart.SH, p, r), (rho - n*x) / ll)

        for pp in (PhasePart.P, PhasePart.SV, PhasePart.SH):
            q = k.q_tau(pp, p, r)
            assert_close(k.q_delta(pp, p, r), p / (r**2 * q))

        assert_close(
            k.q_t(PhasePart.P, p, r),
            1.0 / (s.vpv(r)**2 * k.q_tau(PhasePart.P, p, r)))

        assert_close(
            k.q_t(PhasePart.SV, p, r),
            1.0 / (s.vsv(r)**2 * k.q_tau(PhasePart.SV, p, r)))

    def test_outer_core(self):
        s = smod.prem()
        k = Woodhouse1981(s)
        r = num.linspace(1300., 3400., 8)
        p = 100.
        rho, a = s.rho(r), s.a(r)
        assert_close(k.q_tau_squared(PhasePart.K, p, r), rho / a - p**2/r**2)
        assert_close(
            k.q_delta_numerator(PhasePart.K, p, r), p / r**2)
        assert_close(
            k.q_t_numerator(PhasePart.K, p, r), rho / a)

    def test_vertical_incidence(self):
        s = smod.prem()
        k = Woodhouse1981(s)
        for r in (6200., 6300.):
            self.assertAlmostEqual(
                float(k.q_tau(PhasePart.P, 0.0, r)), 1.0 / s.vpv(r))
            self.assertAlmostEqual(
                float(k.q_tau(PhasePart.SV, 0.0, r)), 1.0 / s.vsv(r))
            self.assertAlmostEqual(
                float(k.q_tau(PhasePart.SH, 0.0, r)), 1.0 / s.vsv(r))
            self.assertEqual(float(k.q_delta(PhasePart.P, 0.0, r)), 0.0)

    def test_anisotropic_numerators(self):
        s = smod.prem()
        k = Woodhouse1981(s)
        r = num.linspace(6160., 6340., 10)
        for pp in (PhasePart.P, PhasePart.SV, PhasePart.SH):
            q = k.q_tau(pp, 400., r)
            assert num.all(num.isfinite(q))
            assert_close(
                k.q_delta(pp, 400., r),
                k.q_delta_numerator(pp, 400., r) / q)
            assert_close(
                k.q_t(pp, 400., r),
                k.q_t_numerator(pp, 400., r) / q)

        # horizontal and vertical P velocities differ
        q_aniso = k.q_tau(PhasePart.P, 400., 6300.)
        q_iso = Woodhouse1981(smod.iprem()).q_tau(PhasePart.P, 400., 6300.)
        assert abs(q_aniso - q_iso) > 1e-4

    def test_evanescent(self):
        k = Woodhouse1981(smod.iprem())
        assert num.isnan(k.q_tau(PhasePart.P, 1000., 5000.))
        assert num.isnan(k.q_delta(PhasePart.P, 1000., 5000.))
        assert num.isnan(k.q_t(PhasePart.SH, 3000., 5000.))

        q = k.q_tau(PhasePart.P, 400., num.array([3500., 6000.]))
        assert num.isnan(q[0])
        assert num.isfinite(q[1])

    def test_near_zero(self):
        s = smod.iprem()
        k = Woodhouse1981(s)
        self.assertAlmostEqual(
            float(k.q_tau(PhasePart.I, 0.0, 0.5, near_zero=True)),
            1.0 / s.vpv(0.0))
        self.assertAlmostEqual(
            float(k.q_tau(PhasePart.JV, 0.0, 0.5, near_zero=True)),
            1.0 / s.vsv(0.0))

    def test_unknown_part(self):
        k = Woodhouse1981(smod.iprem())
        with self.assertRaises(ValueError):
            k.terms('X', 100., 5000.)

    def test_cache(self):
        cache = CoefficientCache()
        k = Woodhouse1981(smod.iprem(), cache)
        r = num.linspace(4000., 5000., 11)

        q1 = k.q_tau(PhasePart.P, 300., r)
        stats = cache.get_stats()
        self.assertEqual(stats.nentries, 1)
        self.assertEqual(stats.nmisses, 1)
        self.assertEqual(stats.nhits, 0)

        q2 = k.q_tau(PhasePart.P, 300., r.copy())
        num.testing.assert_array_equal(q1, q2)
        self.assertEqual(cache.get_stats().nhits, 1)

        # scalars are evaluated directly
        k.q_tau(PhasePart.P, 300., 4500.)
        self.assertEqual(cache.get_stats().nentries, 1)

        # equal structures share entries
        k2 = Woodhouse1981(
            smod.PolynomialStructure(smod.prem_model(False)), cache)
        k2.q_tau(PhasePart.SV, 300., r)
        stats = cache.get_stats()
        self.assertEqual(stats.nhits, 2)
        self.assertEqual(stats.nmisses, 1)

        k3 = Woodhouse1981(smod.prem(), cache)
        k3.q_tau(PhasePart.SV, 300., r)
        self.assertEqual(cache.get_stats().nentries, 2)

        cache.clear()
        self.assertEqual(cache.get_stats().nentries, 0)

    def test_cache_size(self):
        cache = CoefficientCache(maxsize=2)
        k = Woodhouse1981(smod.iprem(), cache)
        r1, r2, r3 = [num.linspace(x, x + 100., 5) for x in (1., 2., 3.)]
        for r in (r1, r2, r1, r3):
            k.q_tau(PhasePart.P, 300., r)

        stats = cache.get_stats()
        self.assertEqual(stats.nentries, 2)
        self.assertEqual(stats.nhits, 1)
        self.assertEqual(stats.nmisses, 3)

        # r2 was least recently used and has been dropped
        k.q_tau(PhasePart.P, 300., r1)
        self.assertEqual(cache.get_stats().nhits, 2)
        k.q_tau(PhasePart.P, 300., r2)
        self.assertEqual(cache.get_stats().nmisses, 4)

        with self.assertRaises(ValueError):
            CoefficientCache(maxsize=0)

        self.assertEqual(
            CoefficientCache().maxsize,
            config.config().coefficient_cache_size)


if __name__ == '__main__':
    util.setup_logging('test_woodhouse', 'warning')
    unittest.main()
