import os
import math
import unittest
import tempfile
import shutil

import numpy as num

from pyrocko import util
from pyrocko.guts import dump

from anisoray import structure as smod
from anisoray.phase import Partition, PhasePart, PassPoint
from anisoray.error import InvalidStructure, InvalidArguments


def toy_structure():
    # rho, vpv, vph, vsv, vsh, eta
    bottom = [
        [13., 11., 11., 3.5, 3.5, 1.],
        [12., 10., 10., 0., 0., 1.],
        [5., 13., 13., 7., 7., 1.]]
    top = [
        [12., 11., 11., 3.5, 3.5, 1.],
        [10., 8., 8., 0., 0., 1.],
        [3., 7., 7., 4., 4., 1.]]

    return smod.TabulatedStructure(
        [0., 1000., 3000.], [1000., 3000., 6000.], bottom, top,
        6000., 3000., 1000., name='toy')


class StructureTestCase(unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp(prefix='anisoray-test')

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def test_prem_values(self):
        s = smod.iprem()
        self.assertAlmostEqual(s.vpv(6371.), 5.8)
        self.assertAlmostEqual(s.rho(6371.), 2.6)
        self.assertAlmostEqual(s.vsv(6360.), 3.2)

        # on a boundary, the layer above is used
        self.assertAlmostEqual(s.vpv(6356.), 5.8)
        self.assertAlmostEqual(s.vpv(6355.9), 6.8)

        self.assertEqual(s.vsv(3479.), 0.0)
        assert s.vsv(3481.) > 7.0
        assert s.vsv(1000.) > 3.0

        # center of the inner core
        self.assertAlmostEqual(s.vpv(0.), 11.2622)
        self.assertAlmostEqual(s.rho(0.), 13.0885)

    def test_arrays(self):
        s = smod.prem()
        r = num.linspace(0., 6371., 101)
        for values in (s.moduli(r), (s.vpv(r), s.vsh(r), s.rho(r))):
            for v in values:
                self.assertEqual(v.shape, r.shape)

        assert isinstance(s.vpv(100.), float)

    def test_moduli(self):
        for s in (smod.prem(), smod.iprem()):
            for r in (500., 2000., 4000., 6200., 6300., 6365.):
                rho, a, c, f, ll, n = s.moduli(r)
                self.assertAlmostEqual(a, rho * s.vph(r)**2)
                self.assertAlmostEqual(c, rho * s.vpv(r)**2)
                self.assertAlmostEqual(ll, rho * s.vsv(r)**2)
                self.assertAlmostEqual(n, rho * s.vsh(r)**2)
                self.assertEqual(a, s.a(r))
                self.assertEqual(f, s.f(r))
                self.assertEqual(ll, s.l(r))

        # transversely isotropic layer
        s = smod.prem()
        r = 6300.
        assert abs(s.vph(r) - s.vpv(r)) > 0.01
        assert abs(s.vsh(r) - s.vsv(r)) > 0.01
        assert s.f(r) != s.a(r) - 2.0 * s.l(r)

        s = smod.iprem()
        self.assertEqual(s.vph(r), s.vpv(r))
        self.assertAlmostEqual(s.f(r), s.a(r) - 2.0 * s.l(r))

    def test_boundaries(self):
        s = smod.prem()
        b = s.velocity_boundaries()
        for r in (0., 1221.5, 3480., 3630., 5600., 5701., 5771., 5971.,
                  6151., 6346.6, 6356., 6371.):
            assert num.any(num.abs(b - r) < 1e-9), r

        assert num.all(num.diff(b) > 0.0)

        bm = s.boundaries_in_mantle()
        self.assertEqual(bm[0], 3480.)
        self.assertEqual(bm[-1], 6371.)
        self.assertEqual(list(s.boundaries_in_outer_core()), [1221.5, 3480.])
        self.assertEqual(list(s.boundaries_in_inner_core()), [0., 1221.5])

        self.assertEqual(s.partition_of(0.), Partition.INNER_CORE)
        self.assertEqual(s.partition_of(1221.5), Partition.OUTER_CORE)
        self.assertEqual(s.partition_of(3000.), Partition.OUTER_CORE)
        self.assertEqual(s.partition_of(3480.), Partition.MANTLE)
        with self.assertRaises(InvalidArguments):
            s.partition_of(6400.)

        self.assertEqual(s.radius_of(PassPoint.EARTH_SURFACE), 6371.)
        self.assertEqual(s.radius_of(PassPoint.CMB), 3480.)
        self.assertEqual(s.radius_of(PassPoint.ICB), 1221.5)
        self.assertEqual(s.radius_of(PassPoint.OTHER, 410.), 5961.)
        with self.assertRaises(InvalidArguments):
            s.radius_of(PassPoint.BOUNCE_POINT)

    def test_jumps(self):
        s = smod.prem()
        for r in (1221.5, 3480., 5701., 5971., 6151., 6356.):
            assert s.is_jump(r), r

        for r in (0., 500., 2000., 4000., 6371.):
            assert not s.is_jump(r), r

        with self.assertRaises(InvalidArguments):
            s.is_jump(-1.)

    def test_turning_radius(self):
        s = smod.iprem()
        p = float(s.horizontal_slowness_radius(PhasePart.P, 5000.))
        self.assertAlmostEqual(s.turning_radius(PhasePart.P, p), 5000., 4)

        p = float(s.horizontal_slowness_radius(PhasePart.K, 2500.))
        self.assertAlmostEqual(s.turning_radius(PhasePart.K, p), 2500., 4)

        # too large for the inner core, waves do not turn there
        assert math.isnan(s.turning_radius(PhasePart.I, 1000.))

        # restricted to radii below rmax
        p = float(s.horizontal_slowness_radius(PhasePart.SH, 6000.))
        assert math.isnan(s.turning_radius(PhasePart.SH, p, rmax=5000.))

    def test_surface_limits(self):
        s = smod.iprem()
        lp, lsv, lsh = s.surface_limits()
        self.assertAlmostEqual(lp, 6371. / 5.8)
        self.assertAlmostEqual(lsv, 6371. / 3.2)
        self.assertAlmostEqual(lsh, lsv)

        lp, lsv, lsh = smod.prem().surface_limits()
        self.assertAlmostEqual(lp, 6371. / 5.8)

    def test_key(self):
        assert smod.prem() == smod.PolynomialStructure(smod.prem_model(True))
        assert smod.prem() != smod.iprem()
        self.assertEqual(
            hash(smod.prem()),
            hash(smod.PolynomialStructure(smod.prem_model(True))))
        assert smod.prem() != toy_structure()
        self.assertEqual(toy_structure(), toy_structure())

    def test_polynomial_file(self):
        fn = os.path.join(self.tempdir, 'prem.yaml')
        dump(smod.prem_model(), filename=fn)
        s = smod.get_structure(fn)
        self.assertEqual(s, smod.prem())
        self.assertEqual(s.name, 'prem')

        fn2 = os.path.join(self.tempdir, 'other.yaml')
        dump(smod.prem_model().layers[0], filename=fn2)
        with self.assertRaises(InvalidStructure):
            smod.load_polynomial(fn2)

    def test_tabulated(self):
        s = toy_structure()
        self.assertAlmostEqual(s.rho(500.), 12.5)
        self.assertAlmostEqual(s.vpv(2000.), 9.0)
        self.assertAlmostEqual(s.vsv(4500.), 5.5)
        self.assertEqual(s.partition_of(2000.), Partition.OUTER_CORE)
        assert s.is_jump(3000.)
        assert not s.is_jump(2000.)
        self.assertEqual(str(s), 'toy (TabulatedStructure, 3 layers)')

        with self.assertRaises(InvalidStructure):
            smod.TabulatedStructure(
                [0., 1000.], [1000., 6000.], [[1.]*6]*2, [[1.]*6]*2,
                6000., 3000., 1000.)

        with self.assertRaises(InvalidStructure):
            smod.TabulatedStructure(
                [0., 1000., 3000.], [1000., 3000., 6000.],
                [[1.]*5]*3, [[1.]*5]*3, 6000., 3000., 1000.)

    def test_check_layers(self):
        good = ([0., 1000., 3000.], [1000., 3000., 6000.], 6000., 3000., 1000.)
        smod.check_layers(*good)

        for args in [
                ([], [], 6000., 3000., 1000.),
                ([0., 1000., 3000.], [1000., 3000., 5000.], 6000., 3000.,
                 1000.),
                ([0., 1000., 3100.], [1000., 3000., 6000.], 6000., 3000.,
                 1000.),
                ([0., 1000., 3000.], [1000., 3000., 6000.], 6000., 1000.,
                 3000.),
                ([0., 1000., 3000.], [1000., 3000., 6000.], 6000., 3000.,
                 1500.)]:

            with self.assertRaises(InvalidStructure):
                smod.check_layers(*args)

    def test_ak135(self):
        s = smod.get_structure('ak135')
        assert isinstance(s, smod.TabulatedStructure)
        assert 3470. < s.cmb < 3490.
        assert 1210. < s.icb < 1230.
        self.assertAlmostEqual(s.earth_radius, 6371., 0)
        assert s.is_jump(s.cmb)
        self.assertEqual(s.vsv(s.cmb - 1.), 0.0)
        self.assertEqual(s.vph(4000.), s.vpv(4000.))


if __name__ == '__main__':
    util.setup_logging('test_structure', 'warning')
    unittest.main()
