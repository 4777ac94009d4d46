"""
Monte Carlo 시뮬레이션 테스트

복원 추출 재표본, 요약 통계, 신뢰 구간, 최악 시나리오
"""

from datetime import timedelta

import numpy as np
import pytest
from src.backtesting.monte_carlo import MonteCarloSimulator, _percentile
from src.backtesting.portfolio import Position
from src.config import load_config


def closed_position(pnl):
    position = Position(instrument_id=1, entry_date='2024-01-02', entry_price=100.0, quantity=10)
    position.close(position.entry_date + timedelta(days=3), 100.0 + pnl / 10, 'take_profit')
    return position


@pytest.fixture
def mixed_positions():
    return [closed_position(p) for p in (500, -200, 300, -100, 800, -400)]


class TestMonteCarloValidation:
    """입력 검증"""

    def test_no_positions(self):
        result = MonteCarloSimulator([], 10_000, seed=1).run()
        assert result == {'success': False, 'error': 'No positions provided'}

    @pytest.mark.parametrize('kwargs', [
        {'simulations': 0},
        {'simulations': 10.5},
        {'confidence_levels': [0.95, 1.0]},
        {'confidence_levels': [0.0]},
    ])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            MonteCarloSimulator([closed_position(100)], 10_000, **kwargs)

    def test_from_settings(self):
        settings = load_config(env_file=None, cli_overrides={'simulations': 50, 'seed': 3})
        simulator = MonteCarloSimulator.from_settings([closed_position(100)], 10_000, settings)

        assert simulator.simulations == 50
        assert simulator.confidence_levels == [0.90, 0.95, 0.99]


class TestMonteCarloRun:
    """시뮬레이션 결과"""

    def test_result_keys(self, mixed_positions):
        result = MonteCarloSimulator(mixed_positions, 10_000, simulations=200, seed=1).run()

        assert result['success'] is True
        assert result['simulations'] == 200
        assert result['initial_capital'] == 10_000
        for key in ('mean_final_capital', 'std_dev_total_return', 'min_max_drawdown', 'max_win_rate'):
            assert key in result['results']
        assert set(result['probability_distributions']) == {'returns', 'drawdowns'}
        assert set(result['confidence_intervals']) == {0.90, 0.95, 0.99}

    def test_seeded_runs_are_reproducible(self, mixed_positions):
        first = MonteCarloSimulator(mixed_positions, 10_000, simulations=100, seed=7).run()
        second = MonteCarloSimulator(mixed_positions, 10_000, simulations=100, seed=7).run()

        assert first == second

    def test_injected_rng(self, mixed_positions):
        first = MonteCarloSimulator(mixed_positions, 10_000, simulations=50,
                                    rng=np.random.default_rng(11)).run()
        second = MonteCarloSimulator(mixed_positions, 10_000, simulations=50, seed=11).run()

        assert first['results'] == second['results']

    def test_identical_trades_have_no_dispersion(self):
        positions = [closed_position(100)] * 3
        result = MonteCarloSimulator(positions, 1_000, simulations=20, seed=1).run()
        stats = result['results']

        assert stats['mean_final_capital'] == pytest.approx(1_300)
        assert stats['std_dev_final_capital'] == 0.0
        assert stats['mean_total_return'] == pytest.approx(30.0)
        assert stats['max_win_rate'] == pytest.approx(100.0)

        interval = result['confidence_intervals'][0.95]['final_capital']
        assert interval == {'lower': 1_300.0, 'upper': 1_300.0, 'range': 0.0}

    def test_all_winning_trades(self):
        positions = [closed_position(p) for p in (100, 200, 300)]
        result = MonteCarloSimulator(positions, 10_000, simulations=100, seed=1).run()

        assert result['worst_case_scenarios']['probability_of_loss'] == 0.0
        assert result['results']['max_max_drawdown'] == 0.0

    def test_large_loss(self):
        result = MonteCarloSimulator([closed_position(-300)], 1_000, simulations=10, seed=1).run()
        worst = result['worst_case_scenarios']

        assert worst['probability_of_loss'] == 100.0
        assert worst['probability_of_large_drawdown'] == 100.0
        assert worst['worst_5_percent']['worst_drawdown'] == pytest.approx(30.0)
        assert worst['worst_5_percent']['worst_final_capital'] == pytest.approx(700.0)

    def test_single_simulation(self, mixed_positions):
        result = MonteCarloSimulator(mixed_positions, 10_000, simulations=1, seed=1).run()
        assert result['results']['std_dev_final_capital'] == 0.0


class TestMonteCarloStatistics:
    """분포 / 신뢰 구간 / 최악 시나리오"""

    def test_percentile_takes_higher_rank(self):
        values = np.array([1.0, 2.0, 3.0, 4.0])

        assert _percentile(values, 0.25) == 2.0
        assert _percentile(values, 0.50) == 3.0
        assert _percentile(values, 1.0) == 4.0

    def test_confidence_interval_ordering(self, mixed_positions):
        result = MonteCarloSimulator(mixed_positions, 10_000, simulations=300, seed=2).run()

        for interval in result['confidence_intervals'].values():
            for bounds in interval.values():
                assert bounds['lower'] <= bounds['upper']
                assert bounds['range'] == pytest.approx(bounds['upper'] - bounds['lower'], abs=0.01)

        ninety = result['confidence_intervals'][0.90]['total_return']
        ninety_nine = result['confidence_intervals'][0.99]['total_return']
        assert ninety_nine['lower'] <= ninety['lower']
        assert ninety_nine['upper'] >= ninety['upper']

    def test_quartiles_ordered(self, mixed_positions):
        result = MonteCarloSimulator(mixed_positions, 10_000, simulations=300, seed=2).run()
        returns = result['probability_distributions']['returns']

        assert returns['min'] <= returns['q25'] <= returns['median'] <= returns['q75'] <= returns['max']

    @pytest.mark.parametrize('simulations,expected', [(30, 2), (1000, 50), (10, 1)])
    def test_worst_case_count(self, mixed_positions, simulations, expected):
        result = MonteCarloSimulator(mixed_positions, 10_000, simulations=simulations, seed=3).run()
        worst = result['worst_case_scenarios']['worst_5_percent']

        assert worst['count'] == expected
        assert worst['worst_return'] == result['results']['min_total_return']
        assert worst['mean_return'] <= result['results']['mean_total_return']

    def test_verbose(self, mixed_positions, capsys):
        MonteCarloSimulator(mixed_positions, 10_000, simulations=10, seed=1).run(verbose=True)
        assert 'Monte Carlo 시뮬레이션 완료: 10회 / 거래 6건' in capsys.readouterr().out
