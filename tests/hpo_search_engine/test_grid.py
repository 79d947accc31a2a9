import numpy as np
import pytest

from modules.hpo_search_engine import regular_grid, space_filling_grid
from modules.hpo_search_engine.grid import grid_size, latin_hypercube, to_unit_matrix
from modules.model_factory import ParameterRange
from utils.exceptions import ConfigurationSpaceError


@pytest.fixture
def ranges():
    return {
        'penalty': ParameterRange(1e-4, 1.0, 'log10'),
        'mixture': ParameterRange(0.0, 1.0),
    }


class TestRegularGrid:

    def test_size_is_product_of_levels(self, ranges):
        grid = regular_grid(ranges, {'penalty': 5, 'mixture': 3})
        assert len(grid) == 15
        assert grid_size(ranges, {'penalty': 5, 'mixture': 3}) == 15
        assert len({(p['penalty'], p['mixture']) for p in grid}) == 15

    def test_every_level_combination_present(self, ranges):
        grid = regular_grid(ranges, 2)
        pairs = {(round(p['penalty'], 8), p['mixture']) for p in grid}
        assert pairs == {(1e-4, 0.0), (1e-4, 1.0), (1.0, 0.0), (1.0, 1.0)}

    def test_declaration_order_is_kept(self, ranges):
        assert list(regular_grid(ranges, 2)[0].keys()) == ['penalty', 'mixture']

    def test_discrete_ranges_use_all_values(self):
        grid = regular_grid({'weight_func': ParameterRange(values=('uniform', 'distance'))}, 7)
        assert [p['weight_func'] for p in grid] == ['uniform', 'distance']

    def test_no_ranges(self):
        with pytest.raises(ConfigurationSpaceError):
            regular_grid({})


class TestSpaceFillingGrid:

    def test_points_are_within_ranges(self, ranges):
        grid = space_filling_grid(ranges, size=12, seed=3)
        assert len(grid) == 12
        for p in grid:
            assert ranges['penalty'].contains(p['penalty'])
            assert ranges['mixture'].contains(p['mixture'])

    def test_reproducible(self, ranges):
        assert space_filling_grid(ranges, 6, seed=1) == space_filling_grid(ranges, 6, seed=1)

    def test_integer_duplicates_are_dropped(self):
        grid = space_filling_grid({'neighbors': ParameterRange(1, 2, integer=True)}, size=10, seed=0)
        assert sorted(p['neighbors'] for p in grid) == [1, 2]

    def test_latin_hypercube_strata(self):
        design = latin_hypercube(8, 2, np.random.RandomState(0))
        for j in range(2):
            assert sorted(np.floor(design[:, j] * 8).astype(int).tolist()) == list(range(8))

    def test_invalid_size(self, ranges):
        with pytest.raises(ConfigurationSpaceError):
            space_filling_grid(ranges, size=0)

    def test_unit_encoding(self, ranges):
        unit = to_unit_matrix([{'penalty': 1e-2, 'mixture': 0.25}], ranges)
        np.testing.assert_allclose(unit, [[0.5, 0.25]])
