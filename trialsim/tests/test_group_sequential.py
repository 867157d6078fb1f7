"""
Tests for group sequential simulation.
"""

import pytest
import numpy as np
import pandas as pd

from trialsim import (
    sim_gs_n, simulate_replicate, Uniform, PerAnalysis, TrialConfig,
    create_cut, create_test, wlr, maxcombo, fh, define_fail_rate, to_sim_pw_surv,
    ConfigurationError, DegenerateStatisticError,
)
from trialsim.analysis.group_sequential import resolve_tests


@pytest.fixture
def stratified_design():
    """Two-stratum delayed-effect design."""
    return define_fail_rate(
        duration=[3, 100, 3, 100],
        fail_rate=np.log(2) / np.array([9, 18, 6, 12]),
        hr=[0.9, 0.6, 0.9, 0.6],
        dropout_rate=0.001,
        stratum=['Positive', 'Positive', 'Negative', 'Negative'],
    )


@pytest.fixture
def strata():
    return pd.DataFrame({'stratum': ['Positive', 'Negative'], 'p': [0.5, 0.5]})


class TestResolveTests:
    """Tests for test plan resolution."""

    def test_uniform(self):
        """Test one test is repeated for every analysis."""
        assert resolve_tests(Uniform(wlr), 3) == [wlr, wlr, wlr]
        assert resolve_tests(wlr, 2) == [wlr, wlr]

    def test_per_analysis(self):
        """Test a list gives one test per analysis."""
        test = create_test(maxcombo)
        assert resolve_tests([wlr, test], 2) == [wlr, test]
        assert resolve_tests(PerAnalysis((wlr, test)), 2) == [wlr, test]

    def test_length_mismatch(self):
        """Test the number of tests must match the number of analyses."""
        with pytest.raises(ConfigurationError, match="2 tests given for 3 analyses"):
            resolve_tests([wlr, wlr], 3)

    def test_not_callable(self):
        """Test every test must be callable."""
        with pytest.raises(ConfigurationError, match="analysis 2"):
            resolve_tests([wlr, "wlr"], 2)


class TestSimGsN:
    """Tests for sim_gs_n."""

    def test_event_driven_analysis(self, stratified_design, strata):
        """Test a 400-subject two-stratum trial cut at 150 events."""
        result = sim_gs_n(
            n_sim=3,
            sample_size=400,
            stratum=strata,
            fail_rate=stratified_design,
            cut=[create_cut(target_event_overall=150)],
            seed=2024,
        )

        assert len(result) == 3
        assert result['sim_id'].tolist() == [1, 2, 3]
        # continuous event times, so no ties at the cut date
        assert (result['event'] == 150).all()
        assert (result['event_trt'] <= result['event']).all()
        assert result['error'].isna().all()
        assert {'z', 'p_value', 'estimate'} <= set(result.columns)

    def test_two_analyses(self):
        """Test interim and final analyses in order with increasing cut dates."""
        ia = create_cut(planned_calendar_time=20)
        fa = create_cut(target_event_overall=200, min_time_after_previous_analysis=10)
        result = sim_gs_n(
            n_sim=4,
            sample_size=300,
            cut=[ia, fa],
            test=create_test(maxcombo, rho=[0, 0], gamma=[0, 0.5]),
            seed=1,
        )

        assert len(result) == 8
        assert result['analysis'].tolist() == [1, 2] * 4
        for _, sim in result.groupby('sim_id'):
            interim, final = sim['cut_date'].tolist()
            assert interim == 20
            assert final >= interim + 10
            assert sim['event'].iloc[1] >= sim['event'].iloc[0]
        assert (result['integration_status'] == 'converged').all()

    def test_reproducible(self):
        """Test a replicate is reproducible on its own."""
        cuts = [create_cut(planned_calendar_time=24)]
        result = sim_gs_n(n_sim=3, sample_size=200, cut=cuts, seed=7)

        fail_rate, dropout_rate = to_sim_pw_surv(define_fail_rate(
            duration=[3, 100],
            fail_rate=np.log(2) / np.array([9, 18]),
            hr=[0.9, 0.6],
            dropout_rate=0.001,
        ))
        config = TrialConfig.create(
            n=200,
            block=('experimental', 'control') * 2,
            enroll_rate=pd.DataFrame({'duration': [2, 2, 10], 'rate': [3, 6, 9]}),
            fail_rate=fail_rate,
            dropout_rate=dropout_rate,
        )
        rows = simulate_replicate(2, config, cuts, [wlr], seed=7)

        assert rows[0]['z'] == pytest.approx(result.loc[result['sim_id'] == 2, 'z'].item())
        assert rows[0]['event'] == result.loc[result['sim_id'] == 2, 'event'].item()

    def test_failure_isolated(self):
        """Test a failing analysis stops only its own replicate."""
        calls = []

        def flaky(data):
            calls.append(len(data))
            if len(calls) == 3:
                raise DegenerateStatisticError("no information")
            return wlr(data, weight=fh(0, 0))

        cuts = [create_cut(planned_calendar_time=12), create_cut(planned_calendar_time=30)]
        with pytest.warns(UserWarning, match="Simulation 2 stopped at analysis 1"):
            result = sim_gs_n(n_sim=3, sample_size=200, cut=cuts, test=flaky, seed=3)

        assert result['sim_id'].tolist() == [1, 1, 2, 3, 3]
        failed = result[result['sim_id'] == 2].iloc[0]
        assert failed['analysis'] == 1
        assert failed['cut_date'] == 12
        assert 'DegenerateStatisticError' in failed['error']
        assert result[result['sim_id'] != 2]['error'].isna().all()

    def test_total_duration(self):
        """Test a single analysis at the total duration when no cut is given."""
        result = sim_gs_n(n_sim=2, sample_size=100, total_duration=30, seed=5)
        assert (result['cut_date'] == 30).all()

    def test_missing_cut(self):
        """Test at least one analysis is required."""
        with pytest.raises(ConfigurationError, match="cut"):
            sim_gs_n(n_sim=1)

    def test_per_analysis_mismatch(self):
        """Test the test list must match the cut list."""
        with pytest.raises(ConfigurationError, match="analyses"):
            sim_gs_n(
                n_sim=1,
                cut=[create_cut(planned_calendar_time=12), create_cut(planned_calendar_time=24)],
                test=PerAnalysis((wlr,)),
            )

    def test_multitest_columns(self):
        """Test dict-valued test output is flattened into prefixed columns."""
        def both(data):
            return {'logrank': wlr(data), 'fh05': wlr(data, weight=fh(0, 0.5))}

        result = sim_gs_n(n_sim=2, sample_size=100, cut=[create_cut(planned_calendar_time=24)],
                          test=both, seed=9)
        assert {'logrank_z', 'fh05_z', 'logrank_p_value'} <= set(result.columns)

    def test_null_z_centred(self):
        """Test the logrank z is centred at 0 without a treatment effect."""
        design = define_fail_rate(duration=[100], fail_rate=np.log(2) / 12, dropout_rate=0.001)
        result = sim_gs_n(
            n_sim=200,
            sample_size=200,
            fail_rate=design,
            cut=[create_cut(target_event_overall=100)],
            seed=42,
        )
        assert abs(result['z'].mean()) < 0.25
        assert 0.7 < result['z'].std() < 1.3


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
