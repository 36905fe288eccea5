"""Unit tests for angle, geometry, isolation and error helpers."""

from __future__ import annotations

import math
import unittest

from bs2phiphi import LorentzVector, Track
from bs2phiphi.physics import (
    average_vertex,
    binomial_error,
    decay_plane_angle,
    delta_phi,
    delta_pos,
    delta_r,
    isolation,
    phi_lorentz,
    poisson_error,
    same_object,
)

from builders import phi_pair


class TestPhysicsHelpers(unittest.TestCase):
    """Validate the kinematic and statistical helper functions."""

    def test_delta_phi_wraps_into_half_open_range(self) -> None:
        self.assertAlmostEqual(delta_phi(3.0, -3.0), 6.0 - 2 * math.pi, places=12)
        self.assertAlmostEqual(delta_phi(-3.0, 3.0), 2 * math.pi - 6.0, places=12)
        self.assertAlmostEqual(delta_phi(math.pi, 0.0), math.pi, places=12)
        self.assertAlmostEqual(delta_phi(-math.pi, 0.0), math.pi, places=12)

    def test_delta_r_combines_eta_and_wrapped_phi(self) -> None:
        self.assertAlmostEqual(delta_r(0.3, 3.1, 0.0, -3.1), math.hypot(0.3, 2 * math.pi - 6.2), places=12)

    def test_same_object_uses_tight_tolerance(self) -> None:
        a = LorentzVector.from_pt_eta_phi_m(5.0, 0.2, 1.0, 0.493)
        b = LorentzVector.from_pt_eta_phi_m(5.0, 0.2, 1.0, 0.493)
        c = LorentzVector.from_pt_eta_phi_m(5.0 + 1e-6, 0.2, 1.0, 0.493)
        self.assertTrue(same_object(a, b))
        self.assertFalse(same_object(a, c))

    def test_phi_pair_builder_reaches_pole_mass(self) -> None:
        trk_a, trk_b = phi_pair(0, pt=3.0, eta=-0.7, phi0=2.0)
        self.assertAlmostEqual(phi_lorentz(trk_a, trk_b).mass, 1.019445, places=9)

    def test_delta_pos_and_average_vertex(self) -> None:
        a = Track(0, pt=2.0, eta=0.0, phi=0.0, charge=1, vertex_x=0.03, vertex_y=0.0, vertex_z=1.0)
        b = Track(1, pt=2.0, eta=0.0, phi=0.0, charge=-1, vertex_x=0.0, vertex_y=0.04, vertex_z=-0.5)
        dxy, dz = delta_pos(a, b)
        self.assertAlmostEqual(dxy, 0.05, places=12)
        self.assertAlmostEqual(dz, 1.5, places=12)
        self.assertEqual(average_vertex(a, b), (0.015, 0.02, 0.25))

    def test_decay_plane_angle(self) -> None:
        x = LorentzVector(1.0, 0.0, 0.0, 2.0)
        y = LorentzVector(0.0, 1.0, 0.0, 2.0)
        z = LorentzVector(0.0, 0.0, 1.0, 2.0)
        # xy plane vs xz plane are perpendicular
        self.assertAlmostEqual(decay_plane_angle(x, y, x, z), math.pi / 2, places=12)
        self.assertAlmostEqual(decay_plane_angle(x, y, x, y), 0.0, places=6)
        self.assertAlmostEqual(decay_plane_angle(x, y, y, x), math.pi, places=6)
        self.assertEqual(decay_plane_angle(x, x, y, z), 0.0)

    def test_isolation_sums_pt_inside_cone(self) -> None:
        kaon = Track(0, pt=4.0, eta=0.0, phi=0.0, charge=1)
        partner = Track(1, pt=4.0, eta=0.0, phi=0.05, charge=-1)
        tracks = [
            kaon,
            partner,
            Track(2, pt=1.0, eta=0.1, phi=0.1, charge=1),
            Track(3, pt=2.0, eta=0.0, phi=0.5, charge=1),
            Track(4, pt=0.5, eta=-0.1, phi=-0.1, charge=-1, vertex_z=3.0),
        ]
        self.assertAlmostEqual(isolation(kaon, tracks, excluded=[1]), 1.5 / 4.0, places=12)
        self.assertAlmostEqual(isolation(kaon, tracks, excluded=[1], max_dz=1.0), 1.0 / 4.0, places=12)
        self.assertAlmostEqual(isolation(kaon, tracks, excluded=[1], min_pt=0.8), 1.0 / 4.0, places=12)
        self.assertAlmostEqual(isolation(kaon, tracks), 5.5 / 4.0, places=12)
        self.assertAlmostEqual(isolation(kaon, tracks, excluded=[1], cone=0.6), 3.5 / 4.0, places=12)

    def test_counting_errors(self) -> None:
        self.assertAlmostEqual(poisson_error(25, 100), 0.05, places=12)
        self.assertAlmostEqual(binomial_error(25, 100), math.sqrt(25 * 0.75) / 100, places=12)
        self.assertEqual(binomial_error(100, 100), 0.0)
        self.assertEqual(poisson_error(3, 0), 0.0)
        self.assertEqual(binomial_error(3, 0), 0.0)

    def test_lorentz_vector_eta_on_beam_axis(self) -> None:
        self.assertEqual(LorentzVector(0.0, 0.0, 5.0, 6.0).eta, 1e9)
        self.assertEqual(LorentzVector(0.0, 0.0, -5.0, 6.0).eta, -1e9)
        self.assertAlmostEqual(LorentzVector(0.0, 0.0, 2.0, 1.0).mass, -math.sqrt(3.0), places=12)

    def test_lorentz_vector_delta_phi_matches_helper(self) -> None:
        a = LorentzVector.from_pt_eta_phi_m(2.0, 0.1, 3.0, 0.493)
        b = LorentzVector.from_pt_eta_phi_m(3.0, -0.4, -3.0, 0.493)
        self.assertAlmostEqual(a.delta_phi(b), delta_phi(a.phi, b.phi), places=12)
        self.assertAlmostEqual(a.delta_phi(b), 6.0 - 2 * math.pi, places=9)
        self.assertAlmostEqual(a.delta_r(b), delta_r(a.eta, a.phi, b.eta, b.phi), places=12)


if __name__ == "__main__":
    unittest.main()
