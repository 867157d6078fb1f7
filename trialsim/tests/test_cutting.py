"""
Tests for data cutting.
"""

import pytest
import numpy as np
import pandas as pd

from trialsim import (
    sim_pw_surv, cut_data_by_date, cut_data_by_event, get_cut_date_by_event, ConfigurationError,
)


@pytest.fixture
def small_trial():
    """Create a small hand-built trial."""
    return pd.DataFrame({
        'id': [1, 2, 3, 4, 5],
        'stratum': ['All'] * 5,
        'enroll_time': [0.0, 1.0, 2.0, 3.0, 6.0],
        'treatment': ['control', 'experimental', 'control', 'experimental', 'control'],
        'fail_time': [4.0, 10.0, 1.0, 2.0, 1.0],
        'dropout_time': [np.inf, 2.0, np.inf, np.inf, np.inf],
        'cte': [4.0, 3.0, 3.0, 5.0, 7.0],
        'fail': [1, 0, 1, 1, 1],
    })


class TestCutDataByDate:
    """Tests for cutting by calendar date."""

    def test_cut(self, small_trial):
        """Test censoring at the cut date."""
        cut = cut_data_by_date(small_trial, 4.5)

        assert cut['id'].tolist() == [1, 2, 3, 4]
        np.testing.assert_allclose(cut['tte'], [4.0, 2.0, 1.0, 1.5])
        assert cut['event'].tolist() == [1, 0, 1, 0]

    def test_event_at_cut_date(self, small_trial):
        """Test an event exactly at the cut date counts."""
        cut = cut_data_by_date(small_trial, 4.0)
        assert cut.loc[cut['id'] == 1, 'event'].item() == 1

    def test_before_enrollment(self, small_trial):
        """Test a cut before anyone enrolls is empty, not an error."""
        cut = cut_data_by_date(small_trial, -1.0)
        assert len(cut) == 0

    def test_after_all_data(self, small_trial):
        """Test a cut after all terminal events keeps everything."""
        cut = cut_data_by_date(small_trial, 100.0)
        assert len(cut) == 5
        assert cut['event'].sum() == small_trial['fail'].sum()

    def test_idempotent(self):
        """Test cutting a cut frame at the same or a later date changes nothing."""
        data = sim_pw_surv(n=200, seed=11)
        cut = cut_data_by_date(data, 12.0)

        pd.testing.assert_frame_equal(cut_data_by_date(cut, 12.0), cut)
        pd.testing.assert_frame_equal(cut_data_by_date(cut, 30.0), cut)

    def test_associative(self):
        """Test cutting twice equals a single cut at the earlier date."""
        data = sim_pw_surv(n=200, seed=12)
        twice = cut_data_by_date(cut_data_by_date(data, 20.0), 10.0)
        once = cut_data_by_date(data, 10.0)
        pd.testing.assert_frame_equal(twice, once)

    def test_missing_columns(self):
        """Test required columns are checked."""
        with pytest.raises(ConfigurationError, match="cte"):
            cut_data_by_date(pd.DataFrame({'stratum': [], 'treatment': [], 'enroll_time': [], 'fail': []}), 1.0)


class TestCutDataByEvent:
    """Tests for cutting by event count."""

    def test_cut_date(self, small_trial):
        """Test the cut date is the event-th event time."""
        assert get_cut_date_by_event(small_trial, 1) == 3.0
        assert get_cut_date_by_event(small_trial, 2) == 4.0
        assert get_cut_date_by_event(small_trial, 4) == 7.0

    def test_ties_included(self):
        """Test subjects tied at the cut date are all included."""
        data = pd.DataFrame({
            'stratum': ['All'] * 4,
            'treatment': ['control', 'experimental'] * 2,
            'enroll_time': [0.0, 0.0, 1.0, 1.0],
            'cte': [2.0, 3.0, 3.0, 5.0],
            'fail': [1, 1, 1, 1],
        })
        cut = cut_data_by_event(data, 2)
        assert cut['event'].sum() == 3

    def test_target_not_reached(self, small_trial):
        """Test a target above the available events keeps all data."""
        date = get_cut_date_by_event(small_trial, 50)
        assert date == 7.0
        pd.testing.assert_frame_equal(cut_data_by_event(small_trial, 50), cut_data_by_date(small_trial, 7.0))

    def test_exact_event_count(self):
        """Test the realized event count equals the target without ties."""
        data = sim_pw_surv(n=300, seed=13)
        cut = cut_data_by_event(data, 100)
        assert cut['event'].sum() == 100

    def test_invalid_target(self, small_trial):
        """Test the target must be a positive integer."""
        with pytest.raises(ConfigurationError, match="positive integer"):
            get_cut_date_by_event(small_trial, 0)
        with pytest.raises(ConfigurationError, match="positive integer"):
            get_cut_date_by_event(small_trial, 2.5)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
