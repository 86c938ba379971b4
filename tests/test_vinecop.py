"""Unit tests for the R-vine density (Vinecop and vinepdf)."""
import json
import math
import unittest
import torch
import torchvinepdf as tvp


_A5 = [
    [1, 1, 2, 3, 3],
    [0, 2, 1, 2, 4],
    [0, 0, 3, 1, 2],
    [0, 0, 0, 4, 1],
    [0, 0, 0, 0, 5],
]

_FAM5 = [
    ["gauss", "clayton", "t", "frank"],
    ["gumbel", "tawn", "joe", 0],
    ["plackett", "surclayton", 0, 0],
    ["fgm", 0, 0, 0],
]

_THETA5 = [
    [0.5, 2.0, [0.3, 5.0], 4.0],
    [1.5, [0.5, 0.8, 2.0], 1.8, 0],
    [3.0, 1.2, 0, 0],
    [0.4, 0, 0, 0],
]

_A3 = [[1, 1, 2], [0, 2, 1], [0, 0, 3]]
_GAUSS3 = [["gauss", "gauss"], ["gauss", 0]]
_RHO3 = [[0.5, 0.3], [0.2, 0]]


def _rand_u(n, d, seed=0):
    g = torch.Generator().manual_seed(seed)
    return torch.rand(n, d, dtype=torch.float64, generator=g).clamp(0.02, 0.98)


def _gauss3_closed_form(u):
    """Trivariate gaussian copula density with the correlations of the 1-2-3 D-vine above."""
    r12, r23, r13_2 = 0.5, 0.3, 0.2
    r13 = r13_2 * math.sqrt((1.0 - r12 ** 2) * (1.0 - r23 ** 2)) + r12 * r23
    R = torch.tensor([[1.0, r12, r13], [r12, 1.0, r23], [r13, r23, 1.0]], dtype=torch.float64)
    x = torch.special.ndtri(u)
    P = torch.linalg.inv(R) - torch.eye(3, dtype=torch.float64)
    q = ((x @ P) * x).sum(dim=1)
    return torch.exp(-0.5 * q) / torch.sqrt(torch.linalg.det(R))


class TestGaussianVine(unittest.TestCase):
    """A gaussian vine is the gaussian copula with the implied correlation matrix."""

    def test_single_point(self):
        u = torch.tensor([[0.3, 0.5, 0.7]], dtype=torch.float64)
        out = tvp.vinepdf(u, _A3, _GAUSS3, _RHO3)
        self.assertEqual(out.shape, (1,))
        self.assertAlmostEqual(out.item(), _gauss3_closed_form(u).item(), places=10)
        self.assertAlmostEqual(out.item(), 1.0711079747881473, places=12)

    def test_batch(self):
        u = _rand_u(100, 3, seed=3)
        out = tvp.vinepdf(u, _A3, _GAUSS3, _RHO3)
        self.assertTrue(torch.allclose(out, _gauss3_closed_form(u), rtol=1e-9, atol=1e-12))

    def test_cvine_with_same_pairs(self):
        # C-vine rooted at 2 has the pairs (2,1), (2,3) and (1,3|2)
        u = _rand_u(50, 3, seed=4)
        out = tvp.vinepdf(u, tvp.cvine_array([2, 1, 3]), _GAUSS3, _RHO3)
        self.assertTrue(torch.allclose(out, _gauss3_closed_form(u), rtol=1e-9, atol=1e-12))

    def test_float32(self):
        u = torch.tensor([[0.3, 0.5, 0.7]], dtype=torch.float32)
        out = tvp.vinepdf(u, _A3, _GAUSS3, _RHO3, controls=tvp.EvalControls(dtype=torch.float32))
        self.assertEqual(out.dtype, torch.float32)
        expected = _gauss3_closed_form(u.double()).item()
        self.assertAlmostEqual(out.item(), expected, places=4)


class TestVinepdfProperties(unittest.TestCase):

    def test_independence_is_one(self):
        for d in (2, 3, 5):
            with self.subTest(d=d):
                fam = [["indep"] * (d - 1) for _ in range(d - 1)]
                theta = [[0] * (d - 1) for _ in range(d - 1)]
                out = tvp.vinepdf(_rand_u(20, d), tvp.dvine_array(d), fam, theta)
                self.assertTrue(torch.equal(out, torch.ones(20, dtype=torch.float64)))

    def test_two_dim_is_pair_copula(self):
        u = _rand_u(30, 2, seed=5)
        for fam, par in (("clayton", 2.0), ("tawn", [0.3, 0.9, 3.0]), ("t", [0.4, 4.0])):
            with self.subTest(family=fam):
                c = tvp.Bicop(fam, par)
                out = tvp.vinepdf(u, [[1, 1], [0, 2]], [[fam]], [[par]])
                self.assertTrue(torch.allclose(out, c.pdf(u)))
                # diagonal 2,1: the pair copula sees (u_2, u_1)
                out = tvp.vinepdf(u, [[2, 2], [0, 1]], [[fam]], [[par]])
                self.assertTrue(torch.allclose(out, c.pdf(u.flip(1))))

    def test_positive_and_finite(self):
        out = tvp.vinepdf(_rand_u(200, 5, seed=6), _A5, _FAM5, _THETA5)
        self.assertEqual(out.shape, (200,))
        self.assertTrue(torch.isfinite(out).all())
        self.assertTrue((out >= 0).all())

    def test_relabeling_invariance(self):
        u = _rand_u(40, 5, seed=7)
        ref = tvp.vinepdf(u, _A5, _FAM5, _THETA5)
        for sigma in ({1: 4, 2: 2, 3: 5, 4: 1, 5: 3}, {1: 5, 2: 4, 3: 3, 4: 2, 5: 1}):
            with self.subTest(sigma=sigma):
                A = [[sigma[_A5[i][j]] if i <= j else 0 for j in range(5)] for i in range(5)]
                u2 = torch.empty_like(u)
                for lab in range(1, 6):
                    u2[:, sigma[lab] - 1] = u[:, lab - 1]
                out = tvp.vinepdf(u2, A, _FAM5, _THETA5)
                self.assertTrue(torch.allclose(out, ref, rtol=1e-10, atol=1e-12))

    def test_row_order_and_batching(self):
        u = _rand_u(25, 5, seed=8)
        full = tvp.vinepdf(u, _A5, _FAM5, _THETA5)
        rows = torch.cat([tvp.vinepdf(u[i:i + 1], _A5, _FAM5, _THETA5) for i in range(25)])
        self.assertTrue(torch.allclose(full, rows, rtol=1e-10, atol=0.0))
        rev = tvp.vinepdf(u.flip(0), _A5, _FAM5, _THETA5)
        self.assertTrue(torch.allclose(rev, full.flip(0), rtol=1e-12, atol=0.0))

    def test_skip_unneeded_hfuncs_same_result(self):
        u = _rand_u(30, 5, seed=9)
        a = tvp.vinepdf(u, _A5, _FAM5, _THETA5)
        b = tvp.vinepdf(u, _A5, _FAM5, _THETA5, controls=tvp.EvalControls(skip_unneeded_hfuncs=False))
        self.assertTrue(torch.equal(a, b))

    def test_inactive_cells_are_ignored(self):
        u = _rand_u(10, 3, seed=10)
        fam = [["gauss", "gauss"], ["gauss", "no such family"]]
        theta = [[0.5, 0.3], [0.2, "garbage"]]
        self.assertTrue(torch.equal(tvp.vinepdf(u, _A3, fam, theta), tvp.vinepdf(u, _A3, _GAUSS3, _RHO3)))

    def test_family_aliases(self):
        u = _rand_u(10, 3, seed=11)
        fam = [["Gaussian", "normal"], ["gaussian", 0]]
        self.assertTrue(torch.equal(tvp.vinepdf(u, _A3, fam, _RHO3), tvp.vinepdf(u, _A3, _GAUSS3, _RHO3)))

    def test_list_input(self):
        out = tvp.vinepdf([[0.3, 0.5, 0.7]], _A3, _GAUSS3, _RHO3)
        self.assertEqual(out.dtype, torch.float64)
        self.assertAlmostEqual(out.item(), _gauss3_closed_form(torch.tensor([[0.3, 0.5, 0.7]], dtype=torch.float64)).item(), places=10)

    def test_one_dimension(self):
        out = tvp.vinepdf([[0.3], [0.6]], [[1]], None, None)
        self.assertTrue(torch.equal(out, torch.ones(2, dtype=torch.float64)))
        out = tvp.vinepdf([[0.3]], [[1]], [], [])
        self.assertTrue(torch.equal(out, torch.ones(1, dtype=torch.float64)))

    def test_zero_rows(self):
        out = tvp.vinepdf(torch.empty(0, 3, dtype=torch.float64), _A3, _GAUSS3, _RHO3)
        self.assertEqual(out.shape, (0,))

    def test_logs_at_debug_level(self):
        with self.assertLogs("torchvinepdf", level="DEBUG") as cm:
            tvp.vinepdf(_rand_u(5, 3), _A3, _GAUSS3, _RHO3)
        self.assertTrue(any("3-dimensional" in line for line in cm.output))


class TestVinepdfErrors(unittest.TestCase):

    def test_structure_error_before_anything_else(self):
        bad_A = [[1, 1, 2], [0, 2, 2], [0, 0, 3]]
        with self.assertRaises(tvp.StructureError):
            tvp.vinepdf(torch.empty(0, 3, dtype=torch.float64), bad_A, _GAUSS3, _RHO3)
        # wrong data shape and bad parameters still report the structure first
        with self.assertRaises(tvp.StructureError):
            tvp.vinepdf(torch.full((4, 2), 0.5), bad_A, [["x"]], [[7.0]])

    def test_infeasible_array(self):
        # passes the column check but tree 2 of column 3 needs a pseudo-observation of column 4
        A = [[1, 1, 4, 1], [0, 2, 1, 2], [0, 0, 3, 3], [0, 0, 0, 4]]
        tvp.validate_structure(A)
        fam = [["indep"] * 3 for _ in range(3)]
        theta = [[0] * 3 for _ in range(3)]
        with self.assertRaises(tvp.StructureError):
            tvp.vinepdf(_rand_u(4, 4), A, fam, theta)

    def test_shape_errors(self):
        u = _rand_u(4, 3)
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(u[:, :2], _A3, _GAUSS3, _RHO3)
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(u[0], _A3, _GAUSS3, _RHO3)
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(u, _A3, [["gauss"]], _RHO3)
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(u, _A3, _GAUSS3, [[0.5, 0.3]])
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(u, _A3, _GAUSS3, None)

    def test_shape_checked_before_parameters(self):
        with self.assertRaises(tvp.ShapeError):
            tvp.vinepdf(_rand_u(4, 2), _A3, _GAUSS3, [[1.5, 0.3], [0.2, 0]])

    def test_parameter_error_coordinates(self):
        with self.assertRaises(tvp.ParameterError) as cm:
            tvp.vinepdf(_rand_u(4, 3), _A3, _GAUSS3, [[0.5, 0.3], [1.5, 0]])
        err = cm.exception
        self.assertEqual((err.row, err.col), (2, 1))
        self.assertEqual(err.family, "gauss")
        self.assertEqual(str(err), "invalid parameter for gauss copula at (2,1)")

    def test_first_invalid_cell_is_reported(self):
        with self.assertRaises(tvp.ParameterError) as cm:
            tvp.vinepdf(_rand_u(4, 3), _A3, _GAUSS3, [[0.5, -1.0], [1.5, 0]])
        self.assertEqual((cm.exception.row, cm.exception.col), (1, 2))

    def test_wrong_number_of_parameters(self):
        fam = [["t", "gauss"], ["gauss", 0]]
        with self.assertRaises(tvp.ParameterError) as cm:
            tvp.vinepdf(_rand_u(4, 3), _A3, fam, _RHO3)
        self.assertEqual((cm.exception.row, cm.exception.col), (1, 1))

    def test_unknown_family(self):
        fam = [["gauss", "bb1"], ["gauss", 0]]
        with self.assertRaises(tvp.ParameterError) as cm:
            tvp.vinepdf(_rand_u(4, 3), _A3, fam, _RHO3)
        self.assertEqual((cm.exception.row, cm.exception.col), (1, 2))

    def test_parameters_checked_before_domain(self):
        u = torch.tensor([[0.0, 0.5, 0.5]], dtype=torch.float64)
        with self.assertRaises(tvp.ParameterError):
            tvp.vinepdf(u, _A3, _GAUSS3, [[0.5, 0.3], [1.5, 0]])

    def test_domain_error(self):
        for bad in (0.0, 1.0, -0.1, float("nan")):
            with self.subTest(value=bad):
                u = torch.tensor([[0.3, bad, 0.7]], dtype=torch.float64)
                with self.assertRaises(tvp.DomainError):
                    tvp.vinepdf(u, _A3, _GAUSS3, _RHO3)

    def test_clamp_inputs(self):
        u = torch.tensor([[0.0, 0.5, 1.0]], dtype=torch.float64)
        out = tvp.vinepdf(u, _A3, _GAUSS3, _RHO3, controls=tvp.EvalControls(clamp_inputs=True, eps=1e-6))
        self.assertTrue(torch.isfinite(out).all())
        self.assertTrue((out >= 0).all())

    def test_all_errors_are_value_errors(self):
        for cls in (tvp.StructureError, tvp.ShapeError, tvp.ParameterError, tvp.DomainError):
            self.assertTrue(issubclass(cls, ValueError))


class TestVinecop(unittest.TestCase):

    def _model(self):
        return tvp.Vinecop.from_arrays(_A5, _FAM5, _THETA5)

    def test_pdf_matches_vinepdf(self):
        u = _rand_u(20, 5, seed=12)
        self.assertTrue(torch.equal(self._model().pdf(u), tvp.vinepdf(u, _A5, _FAM5, _THETA5)))

    def test_properties(self):
        vc = self._model()
        self.assertEqual(vc.dim, 5)
        self.assertEqual(vc.npars, 1 + 1 + 2 + 1 + 1 + 3 + 1 + 1 + 1 + 1)
        self.assertEqual(vc.families[1], ["gumbel", "tawn", "joe"])
        self.assertEqual(vc.get_pair_copula(1, 1).family, tvp.BicopFamily.tawn)
        self.assertEqual([len(t) for t in vc.parameters], [4, 3, 2, 1])

    def test_dvine_and_cvine_constructors(self):
        u = _rand_u(10, 3, seed=13)
        dv = tvp.Vinecop.from_dvine_order([1, 2, 3], _GAUSS3, _RHO3)
        self.assertTrue(torch.allclose(dv.pdf(u), _gauss3_closed_form(u), rtol=1e-9))
        cv = tvp.Vinecop.from_cvine_order([2, 1, 3], _GAUSS3, _RHO3)
        self.assertTrue(torch.allclose(cv.pdf(u), _gauss3_closed_form(u), rtol=1e-9))

    def test_independence(self):
        vc = tvp.Vinecop.independence(_A5)
        self.assertEqual(vc.npars, 0)
        self.assertTrue(torch.equal(vc.pdf(_rand_u(7, 5)), torch.ones(7, dtype=torch.float64)))

    def test_pair_copula_grid_shape(self):
        with self.assertRaises(tvp.ShapeError):
            tvp.Vinecop(structure=tvp.RVineArray.from_array(_A3), pair_copulas=[[tvp.Bicop()]])

    def test_loglik_aic_bic(self):
        vc = tvp.Vinecop.from_arrays(_A3, _GAUSS3, _RHO3)
        u = _rand_u(30, 3, seed=14)
        ll = vc.loglik(u)
        self.assertAlmostEqual(ll, float(torch.log(_gauss3_closed_form(u)).sum()), places=8)
        self.assertAlmostEqual(vc.aic(u), -2.0 * ll + 6.0, places=8)
        self.assertAlmostEqual(vc.bic(u), -2.0 * ll + 3.0 * math.log(30.0), places=8)

    def test_json_roundtrip(self):
        vc = self._model()
        vc2 = tvp.Vinecop.from_json(json.dumps(vc.to_json()))
        u = _rand_u(10, 5, seed=15)
        self.assertTrue(torch.equal(vc.pdf(u), vc2.pdf(u)))
        with self.assertRaises(ValueError):
            tvp.Vinecop.from_json({"structure": {"array": _A3}})

    def test_str(self):
        s = self._model().str()
        self.assertIn("Vinecop model with 5 variables", s)
        self.assertIn("tawn", s)
        self.assertEqual(len(s.splitlines()), 2 + 10)


if __name__ == "__main__":
    unittest.main()
