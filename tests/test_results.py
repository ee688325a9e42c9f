"""
Unit tests for merbridge.types.results.

Covers option validation and conversion of R-side payloads into the
host result types.
"""
import math

import pytest
import numpy as np
import pandas as pd


class TestFitConfig:
    """Test FitConfig validation."""

    def test_defaults(self):
        """Test ML, quiet by default"""
        from merbridge.types.results import FitConfig

        config = FitConfig()

        assert config.reml is False
        assert config.verbose is False

    @pytest.mark.parametrize("kwargs", [{"reml": 1}, {"verbose": "yes"}, {"reml": None}])
    def test_non_bool_rejected(self, kwargs):
        """Test flags must be real bools"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import FitConfig

        with pytest.raises(ConfigurationError):
            FitConfig(**kwargs)

    def test_numpy_bools_accepted(self):
        """Test numpy bools are taken and stored as plain bools"""
        from merbridge.types.results import FitConfig

        config = FitConfig(reml=np.bool_(True), verbose=np.bool_(False))

        assert config.reml is True
        assert config.verbose is False


class TestBootstrapConfig:
    """Test BootstrapConfig validation."""

    def test_defaults(self):
        """Test default coverage, seed and flags"""
        from merbridge.types.results import BootstrapConfig

        config = BootstrapConfig(n=100)

        assert config.coverage == 0.95
        assert config.seed == 1234
        assert config.use_threads is False
        assert config.ncpus is None
        assert config.keep_draws is False

    @pytest.mark.parametrize("n", [0, -1, 1.5, True, "10", 2**31])
    def test_bad_n(self, n):
        """Test n must be a positive integer in R's range"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=n)

    @pytest.mark.parametrize("coverage", [0, 0.0, 1, 1.0, -0.1, 1.5, math.nan, math.inf, True, "0.9"])
    def test_bad_coverage(self, coverage):
        """Test coverage must lie strictly inside (0, 1)"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=10, coverage=coverage)

    @pytest.mark.parametrize("coverage", [0.01, 0.5, 0.95, 0.999])
    def test_good_coverage(self, coverage):
        """Test valid coverages"""
        from merbridge.types.results import BootstrapConfig

        assert BootstrapConfig(n=10, coverage=coverage).coverage == coverage

    @pytest.mark.parametrize("seed", [1.0, None, 2**31, False])
    def test_bad_seed(self, seed):
        """Test seed must be an R integer"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=10, seed=seed)

    @pytest.mark.parametrize("ncpus", [0, -2, 1.0, True])
    def test_bad_ncpus(self, ncpus):
        """Test ncpus must be a positive integer"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=10, use_threads=True, ncpus=ncpus)

    @pytest.mark.parametrize("flag", ["reml", "use_threads", "keep_draws"])
    def test_bad_flags(self, flag):
        """Test flags must be real bools"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=10, **{flag: 1})

    @pytest.mark.parametrize("n, seed, ncpus", [
        (np.int64(100), np.int64(9), np.int32(2)),
        (np.int32(100), np.int16(9), np.uint8(2)),
        (np.uint64(100), np.int64(-9), None),
    ])
    def test_numpy_integers_accepted(self, n, seed, ncpus):
        """Test numpy integers are taken and stored as plain ints"""
        from merbridge.types.results import BootstrapConfig

        config = BootstrapConfig(n=n, seed=seed, use_threads=ncpus is not None, ncpus=ncpus)

        assert config.n == 100 and type(config.n) is int
        assert config.seed == int(seed) and type(config.seed) is int
        assert config.ncpus is None or type(config.ncpus) is int

    @pytest.mark.parametrize("flag", ["reml", "use_threads", "keep_draws"])
    def test_numpy_bool_flags_accepted(self, flag):
        """Test numpy bool flags are stored as plain bools"""
        from merbridge.types.results import BootstrapConfig

        assert getattr(BootstrapConfig(n=10, **{flag: np.bool_(True)}), flag) is True

    @pytest.mark.parametrize("value", [np.bool_(True), np.float64(10.0)])
    def test_numpy_non_integers_rejected_as_n(self, value):
        """Test numpy bools and floats are not counts"""
        from merbridge.types.errors import ConfigurationError
        from merbridge.types.results import BootstrapConfig

        with pytest.raises(ConfigurationError):
            BootstrapConfig(n=value)


class TestMixedModelFit:
    """Test MixedModelFit.from_r() and its views."""

    def _fit(self, payload, sample_dataframe):
        from merbridge.types.formula import Formula
        from merbridge.types.results import MixedModelFit

        f = Formula.parse("y ~ x + (1 | group)")
        return MixedModelFit.from_r(f, sample_dataframe, payload)

    def test_from_r(self, make_conversion_payload, sample_dataframe):
        """Test every field is carried over"""
        fit = self._fit(make_conversion_payload(), sample_dataframe)

        assert list(fit.fixed_effects.index) == ["(Intercept)", "x"]
        assert list(fit.fixed_effects.columns) == ["estimate", "std_error", "t_value"]
        assert fit.fixed_effects.loc["x", "estimate"] == pytest.approx(2.0)
        assert fit.loglik == pytest.approx(-12.5)
        assert fit.df == 4
        assert fit.nobs == 8
        assert fit.sigma == pytest.approx(0.2)
        assert fit.ngroups == {"group": 4}
        assert fit.reml is False
        assert fit.r_formula == "y ~ 1 + x + (1 | group)"
        assert fit.converged is True
        assert fit.data is sample_dataframe

    def test_varcorr_missing_as_none(self, make_conversion_payload, sample_dataframe):
        """Test empty strings from R become None"""
        fit = self._fit(make_conversion_payload(), sample_dataframe)

        assert fit.varcorr["group"].tolist() == ["group", "Residual"]
        assert fit.varcorr["var1"].tolist() == ["(Intercept)", None]
        assert fit.varcorr["var2"].tolist() == [None, None]

    def test_not_converged(self, make_conversion_payload, sample_dataframe):
        """Test a convergence warning is kept, not raised"""
        payload = make_conversion_payload(
            convergence_messages=["Model failed to converge with max|grad| = 0.01"]
        )
        fit = self._fit(payload, sample_dataframe)

        assert fit.converged is False
        assert fit.convergence_messages == ("Model failed to converge with max|grad| = 0.01",)

    def test_single_message_string(self, make_conversion_payload, sample_dataframe):
        """Test a lone message arriving as a string"""
        payload = make_conversion_payload()
        payload["convergence_messages"] = "Model failed to converge"
        fit = self._fit(payload, sample_dataframe)

        assert fit.convergence_messages == ("Model failed to converge",)

    def test_nonzero_code(self, make_conversion_payload, sample_dataframe):
        """Test a non-zero optimizer code marks the fit as not converged"""
        fit = self._fit(make_conversion_payload(convergence_code=-1), sample_dataframe)

        assert fit.converged is False

    def test_singular_fit_is_converged(self, make_conversion_payload, sample_dataframe):
        """Test a singular fit is flagged without counting as non-converged"""
        fit = self._fit(make_conversion_payload(singular=True), sample_dataframe)

        assert fit.singular is True
        assert fit.converged is True
        assert fit.convergence_messages == ()

    def test_summary_singular_note(self, make_conversion_payload, sample_dataframe):
        """Test the singular-fit note is printed apart from convergence warnings"""
        text = str(self._fit(make_conversion_payload(singular=True), sample_dataframe).summary())

        assert "boundary (singular) fit" in text
        assert "Convergence warnings" not in text

    def test_coef_table(self, make_conversion_payload, sample_dataframe):
        """Test coef_table is the fixed-effects table"""
        fit = self._fit(make_conversion_payload(), sample_dataframe)

        assert fit.coef_table() is fit.fixed_effects

    def test_summary(self, make_conversion_payload, sample_dataframe):
        """Test the summary tables and printout"""
        fit = self._fit(make_conversion_payload(), sample_dataframe)
        summary = fit.summary()

        assert summary.random["group"].tolist() == ["group", "Residual"]
        assert summary.random["name"].tolist() == ["(Intercept)", ""]
        assert summary.correlations.empty

        text = str(summary)
        assert text.startswith("Linear mixed model fit by maximum likelihood")
        assert "Formula: y ~ 1 + x + (1 | group)" in text
        assert "Random effects:" in text
        assert "Number of obs: 8, groups:  group, 4" in text
        assert "Fixed effects:" in text
        assert "deviance" in text
        assert "Convergence warnings" not in text

    def test_summary_reml_and_warnings(self, make_conversion_payload, sample_dataframe):
        """Test REML wording and convergence warnings in the printout"""
        payload = make_conversion_payload(
            reml=True,
            convergence_messages=["Model is nearly unidentifiable: very large eigenvalue"],
        )
        text = str(self._fit(payload, sample_dataframe).summary())

        assert text.startswith("Linear mixed model fit by REML")
        assert "REML criterion" in text
        assert "Convergence warnings:" in text
        assert "Model is nearly unidentifiable: very large eigenvalue" in text
        assert "boundary (singular) fit" not in text

    def test_summary_correlations(self, make_conversion_payload, sample_dataframe):
        """Test correlation rows are split from standard deviations"""
        payload = make_conversion_payload()
        payload["varcorr"] = pd.DataFrame({
            "group": ["group", "group", "group", "Residual"],
            "var1": ["(Intercept)", "x", "(Intercept)", ""],
            "var2": ["", "", "x", ""],
            "vcov": [0.25, 0.09, 0.03, 0.04],
            "sdcor": [0.5, 0.3, 0.2, 0.2],
        })
        summary = self._fit(payload, sample_dataframe).summary()

        assert len(summary.random) == 3
        assert summary.correlations.to_dict("records") == [
            {"group": "group", "var1": "(Intercept)", "var2": "x", "corr": 0.2}
        ]
        assert "Correlations:" in str(summary)


class TestBootstrapResult:
    """Test BootstrapResult."""

    def _result(self, raw):
        from merbridge.types.results import BootstrapResult

        return BootstrapResult(table=BootstrapResult._tidy(raw), n=100, coverage=0.95, seed=9)

    def test_tidy(self, make_interval_payload):
        """Test column order and missing keys"""
        result = self._result(make_interval_payload())

        assert list(result.table.columns) == ["type", "group", "names", "lower", "upper"]
        assert result.table["group"].tolist() == [None, None, "group", "Residual"]
        assert result.table["names"].tolist() == ["(Intercept)", "x", "(Intercept)", None]

    def test_interval(self, make_interval_payload):
        """Test looking up single intervals"""
        result = self._result(make_interval_payload())

        assert result.interval("beta", names="x") == (1.7, 2.3)
        assert result.interval("sigma", "group", "(Intercept)") == (0.1, 0.9)
        assert result.interval("sigma", group="Residual") == (0.15, 0.25)

    def test_interval_missing(self, make_interval_payload):
        """Test an unknown key raises KeyError"""
        result = self._result(make_interval_payload())

        with pytest.raises(KeyError):
            result.interval("rho", "group", "(Intercept), x")

    def test_widths(self, make_interval_payload):
        """Test widths"""
        result = self._result(make_interval_payload())

        assert result.widths.tolist() == pytest.approx([0.4, 0.6, 0.8, 0.1])

    def test_labels(self, make_interval_payload):
        """Test draw column labels"""
        from merbridge.types.results import BootstrapResult

        result = self._result(make_interval_payload())

        assert BootstrapResult.labels(result.table) == [
            "beta:(Intercept)",
            "beta:x",
            "sigma:group:(Intercept)",
            "sigma:Residual",
        ]
