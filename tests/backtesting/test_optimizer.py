"""
파라미터 최적화 테스트

GridOptimizer (전수 탐색 + 민감도 분석), OptunaOptimizer (Bayesian, slow)
"""

from unittest.mock import patch

import pytest
from conftest import TrendEvaluator
from src.backtesting.data_loader import DataLoader
from src.backtesting.engine import BacktestConfig
from src.backtesting.optimizer import (
    GridOptimizer, OptunaOptimizer, calculate_score, generate_combinations,
)
from src.backtesting.walk_forward import WalkForwardConfig
from src.config import load_config


def make_grid(store, parameter_ranges, **kwargs):
    kwargs.setdefault('use_walk_forward', False)
    return GridOptimizer(
        instruments=[1, 2, 3],
        from_date='2024-01-01',
        to_date='2024-06-28',
        evaluator=TrendEvaluator(),
        data_loader=DataLoader(store),
        parameter_ranges=parameter_ranges,
        base_config=BacktestConfig(min_candles=5, max_positions=3),
        **kwargs
    )


def make_optuna(store, **kwargs):
    return OptunaOptimizer(
        instruments=[1, 2, 3],
        from_date='2024-01-01',
        to_date='2024-04-30',
        evaluator=TrendEvaluator(),
        data_loader=DataLoader(store),
        base_config=BacktestConfig(min_candles=5, max_positions=3),
        **kwargs
    )


class TestHelpers:
    """점수 / 조합 생성"""

    def test_calculate_score(self):
        metrics = {'sharpe_ratio': 1.0, 'total_return': 10.0, 'win_rate': 50.0, 'profit_factor': 2.0}

        assert calculate_score(metrics, 'total_return') == 10.0
        assert calculate_score(metrics, 'composite') == pytest.approx(12.8)
        assert calculate_score({}, 'sharpe_ratio') == 0

    def test_generate_combinations(self):
        combos = generate_combinations({'a': [1, 2], 'b': (3, 4), 'c': 5})

        assert len(combos) == 4
        assert combos[0] == {'a': 1, 'b': 3, 'c': 5}
        assert combos[-1] == {'a': 2, 'b': 4, 'c': 5}

    def test_generate_combinations_range(self):
        assert generate_combinations({'n': range(3)}) == [{'n': 0}, {'n': 1}, {'n': 2}]

    def test_empty_ranges(self):
        assert generate_combinations({}) == []


class TestGridOptimizer:
    """전수 탐색"""

    def test_invalid_metric(self, zigzag_store):
        with pytest.raises(ValueError):
            make_grid(zigzag_store, {}, optimization_metric='alpha')

    def test_empty_ranges_is_trivial_success(self, zigzag_store):
        result = make_grid(zigzag_store, {}).run()

        assert result['success'] is True
        assert result['total_combinations'] == 0
        assert result['total_combinations_tested'] == 0
        assert result['best_parameters'] is None
        assert result['all_results'] == []
        assert result['sensitivity_analysis'] == {}

    def test_run_single_period(self, zigzag_store):
        result = make_grid(zigzag_store, {
            'risk_per_trade': [1.0, 2.0],
            'target_pct': [5.0, 10.0],
        }).run()

        assert result['success'] is True
        assert result['total_combinations'] == 4
        assert result['total_combinations_tested'] == 4

        scores = [r['score'] for r in result['all_results']]
        assert scores == sorted(scores, reverse=True)
        assert result['best_parameters'] == result['all_results'][0]['parameters']
        assert set(result['sensitivity_analysis']) == {'risk_per_trade', 'target_pct'}

    def test_strategy_parameters_reach_evaluator(self, zigzag_store):
        optimizer = make_grid(zigzag_store, {})
        with patch.object(TrendEvaluator, 'evaluate', autospec=True, return_value=None) as evaluate:
            optimizer.test_parameters({'target_pct': 7.0})

        assert evaluate.call_args.kwargs['overrides'] == {'target_pct': 7.0}

    def test_run_with_walk_forward(self, zigzag_store):
        result = make_grid(
            zigzag_store, {'risk_per_trade': [1.0, 2.0]},
            use_walk_forward=True,
            wf_config=WalkForwardConfig(in_sample_days=60, out_of_sample_days=30),
            optimization_metric='composite',
        ).run()

        assert result['total_combinations_tested'] == 2
        metrics = result['best_metrics']
        for key in ('total_return', 'sharpe_ratio', 'win_rate', 'profit_factor', 'total_trades'):
            assert key in metrics

    def test_failed_combinations_skipped(self, store):
        result = make_grid(store, {'risk_per_trade': [1.0, 2.0]}).run()

        assert result['total_combinations'] == 2
        assert result['total_combinations_tested'] == 0
        assert result['best_parameters'] is None

    def test_invalid_parameter_raises(self, zigzag_store):
        with pytest.raises(ValueError):
            make_grid(zigzag_store, {'max_positions': [0]}).run()

    def test_ranking_and_sensitivity(self, zigzag_store):
        scores = {(1, 1): 5.0, (2, 1): 3.0, (1, 2): 4.0, (2, 2): 1.0}

        def fake_test(params):
            return {'success': True, 'metrics': {'sharpe_ratio': scores[(params['a'], params['b'])]}}

        optimizer = make_grid(zigzag_store, {'a': [1, 2], 'b': [1, 2]})
        with patch.object(optimizer, 'test_parameters', side_effect=fake_test):
            result = optimizer.run()

        assert result['best_parameters'] == {'a': 1, 'b': 1}
        assert [r['score'] for r in result['all_results']] == [5.0, 4.0, 3.0, 1.0]

        sensitivity = result['sensitivity_analysis']
        assert sensitivity['a']['values'] == [{'value': 1, 'score': 5.0}, {'value': 2, 'score': 3.0}]
        assert sensitivity['a']['score_range'] == pytest.approx(2.0)
        assert sensitivity['a']['best_value'] == 1
        assert sensitivity['a']['best_score'] == pytest.approx(4.5)
        assert sensitivity['a']['all_values'][1] == {'value': 2, 'avg_score': 2.0, 'count': 2}
        assert sensitivity['b']['score_range'] == pytest.approx(1.0)

    def test_verbose(self, zigzag_store, capsys):
        make_grid(zigzag_store, {'risk_per_trade': [1.0]}).run(verbose=True)
        out = capsys.readouterr().out

        assert 'Grid Search: 1개 조합' in out
        assert '최적 파라미터' in out

    def test_from_settings(self, zigzag_store):
        settings = load_config(env_file=None, cli_overrides={
            'metric': 'total_return', 'in_sample_days': 60, 'min_candles': 5,
        })
        settings['optimizer']['use_walk_forward'] = False

        optimizer = GridOptimizer.from_settings(
            [1, 2, 3], '2024-01-01', '2024-06-28', TrendEvaluator(), DataLoader(zigzag_store),
            {'risk_per_trade': [1.0]}, settings,
        )

        assert optimizer.optimization_metric == 'total_return'
        assert optimizer.use_walk_forward is False
        assert optimizer.wf_config.in_sample_days == 60
        assert optimizer.base_config.min_candles == 5
        assert optimizer.run()['total_combinations_tested'] == 1


@pytest.mark.slow
class TestOptunaOptimizer:
    """Bayesian Optimization (Optuna TPE)"""

    PARAM_SPACE = {
        'risk_per_trade': {'type': 'float', 'low': 1.0, 'high': 3.0},
        'target_pct': {'type': 'float', 'low': 3.0, 'high': 10.0},
    }

    def test_optimize(self, zigzag_store):
        result = make_optuna(zigzag_store).optimize(param_space=self.PARAM_SPACE, n_trials=6)

        assert result is not None
        assert set(result['params']) == {'risk_per_trade', 'target_pct'}
        assert 1.0 <= result['config'].risk_per_trade <= 3.0
        assert result['config'].strategy_overrides['target_pct'] == result['params']['target_pct']
        assert 'sharpe_ratio' in result
        assert result['total_complete'] + result['total_pruned'] <= 6

    def test_seeded_runs_are_reproducible(self, zigzag_store):
        first = make_optuna(zigzag_store, seed=7).optimize(param_space=self.PARAM_SPACE, n_trials=4)
        second = make_optuna(zigzag_store, seed=7).optimize(param_space=self.PARAM_SPACE, n_trials=4)

        assert first['params'] == second['params']

    def test_progress_callback(self, zigzag_store):
        progress = []
        make_optuna(zigzag_store).optimize(
            param_space=self.PARAM_SPACE, n_trials=3,
            progress_callback=lambda current, total: progress.append((current, total)),
        )
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_settings_defaults(self, zigzag_store):
        settings = load_config(env_file=None, cli_overrides={'n_trials': 3, 'metric': 'total_return', 'min_candles': 5})
        optimizer = OptunaOptimizer.from_settings(
            [1, 2, 3], '2024-01-01', '2024-04-30', TrendEvaluator(), DataLoader(zigzag_store), settings,
        )
        progress = []

        result = optimizer.optimize(
            param_space=self.PARAM_SPACE,
            progress_callback=lambda current, total: progress.append((current, total)),
        )

        assert progress[-1] == (3, 3)
        assert 'total_return' in result

    def test_invalid_parameters_yield_none(self, zigzag_store):
        space = {'max_positions': {'type': 'int', 'low': 0, 'high': 0}}
        assert make_optuna(zigzag_store).optimize(param_space=space, n_trials=2) is None

    def test_invalid_metric(self, zigzag_store):
        with pytest.raises(ValueError):
            make_optuna(zigzag_store).optimize(n_trials=1, metric='alpha')

    def test_persistent_study(self, zigzag_store, tmp_path):
        storage = f"sqlite:///{tmp_path / 'studies.db'}"

        make_optuna(zigzag_store, study_storage=storage).optimize(param_space=self.PARAM_SPACE, n_trials=2)
        resumed = make_optuna(zigzag_store, study_storage=storage).optimize(
            param_space=self.PARAM_SPACE, n_trials=2)
        reset = make_optuna(zigzag_store, study_storage=storage).optimize(
            param_space=self.PARAM_SPACE, n_trials=2, reset=True)

        assert resumed['total_complete'] + resumed['total_pruned'] == 4
        assert reset['total_complete'] + reset['total_pruned'] == 2
