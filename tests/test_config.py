"""
Unit tests for src/config.py
"""

import copy
import os
from unittest.mock import patch

import pytest
from src.backtesting.walk_forward import WalkForwardConfig
from src.config import load_config, _validate_config, DEFAULT_CONFIG, get_db_path


class TestDefaultConfig:
    """Test DEFAULT_CONFIG validity"""

    def test_default_config_is_valid(self):
        _validate_config(DEFAULT_CONFIG)

    def test_sections(self):
        assert set(DEFAULT_CONFIG) == {'backtest', 'data', 'walk_forward', 'optimizer', 'monte_carlo'}

    def test_defaults(self):
        assert DEFAULT_CONFIG['backtest']['initial_capital'] == 100_000.0
        assert DEFAULT_CONFIG['data']['min_candles'] == 50
        assert DEFAULT_CONFIG['walk_forward']['window_type'] == 'rolling'

    def test_db_path(self):
        assert get_db_path().name == 'candles.db'


class TestValidateConfigBacktest:
    def test_non_positive_capital(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['backtest']['initial_capital'] = 0
        with pytest.raises(ValueError, match="initial_capital"):
            _validate_config(config)

    def test_risk_out_of_range(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        for risk in [0.05, 10.5]:
            config['backtest']['risk_per_trade'] = risk
            with pytest.raises(ValueError, match="risk_per_trade"):
                _validate_config(config)

    def test_negative_costs(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['backtest']['slippage_pct'] = -0.1
        with pytest.raises(ValueError, match="slippage_pct"):
            _validate_config(config)

    def test_invalid_sizing_method(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['backtest']['position_sizing_method'] = 'kelly'
        with pytest.raises(ValueError, match="position_sizing_method"):
            _validate_config(config)


class TestValidateConfigOther:
    def test_invalid_window_type(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['walk_forward']['window_type'] = 'sliding'
        with pytest.raises(ValueError, match="window_type"):
            _validate_config(config)

    def test_zero_workers(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['walk_forward']['workers'] = 0
        with pytest.raises(ValueError, match="workers"):
            _validate_config(config)

    def test_invalid_metric(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['optimizer']['metric'] = 'alpha'
        with pytest.raises(ValueError, match="metric"):
            _validate_config(config)

    @pytest.mark.parametrize('key', ['in_sample_days', 'out_of_sample_days'])
    def test_window_shorter_than_two_days(self, key):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['walk_forward'][key] = 1
        with pytest.raises(ValueError, match=key):
            _validate_config(config)

    def test_minimum_window_accepted_by_walk_forward(self):
        config = load_config(env_file=None, cli_overrides={'in_sample_days': 2, 'out_of_sample_days': 2})
        wf_config = WalkForwardConfig.from_settings(config)

        assert (wf_config.in_sample_days, wf_config.out_of_sample_days) == (2, 2)

    def test_invalid_n_trials(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['optimizer']['n_trials'] = 0
        with pytest.raises(ValueError, match="n_trials"):
            _validate_config(config)

    def test_invalid_use_walk_forward(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['optimizer']['use_walk_forward'] = 'yes'
        with pytest.raises(ValueError, match="use_walk_forward"):
            _validate_config(config)

    def test_invalid_confidence_level(self):
        config = copy.deepcopy(DEFAULT_CONFIG)
        config['monte_carlo']['confidence_levels'] = [0.95, 1.5]
        with pytest.raises(ValueError, match="confidence level"):
            _validate_config(config)


class TestLoadConfig:
    def test_defaults_without_env_file(self):
        config = load_config(env_file=None)
        assert config['backtest'] == DEFAULT_CONFIG['backtest']

    def test_does_not_mutate_defaults(self):
        load_config(env_file=None, cli_overrides={'capital': 5_000_000.0})
        assert DEFAULT_CONFIG['backtest']['initial_capital'] == 100_000.0

    def test_cli_overrides(self):
        config = load_config(env_file=None, cli_overrides={
            'capital': 5_000_000.0,
            'sizing': 'equal_weight',
            'window_type': 'expanding',
            'simulations': 200,
            'risk': None,
        })
        assert config['backtest']['initial_capital'] == 5_000_000.0
        assert config['backtest']['position_sizing_method'] == 'equal_weight'
        assert config['walk_forward']['window_type'] == 'expanding'
        assert config['monte_carlo']['simulations'] == 200
        assert config['backtest']['risk_per_trade'] == 2.0

    def test_env_file(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text("BACKTEST_INITIAL_CAPITAL=250000\nBACKTEST_MIN_CANDLES=30\n")

        with patch.dict(os.environ, {}):
            os.environ.pop('BACKTEST_INITIAL_CAPITAL', None)
            os.environ.pop('BACKTEST_MIN_CANDLES', None)
            config = load_config(env_file=str(env_file))

        assert config['backtest']['initial_capital'] == 250000.0
        assert config['data']['min_candles'] == 30

    def test_cli_beats_env(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text("BACKTEST_INITIAL_CAPITAL=250000\n")

        with patch.dict(os.environ, {}):
            os.environ.pop('BACKTEST_INITIAL_CAPITAL', None)
            config = load_config(env_file=str(env_file), cli_overrides={'capital': 1_000.0})

        assert config['backtest']['initial_capital'] == 1_000.0

    def test_invalid_override_raises(self):
        with pytest.raises(ValueError):
            load_config(env_file=None, cli_overrides={'metric': 'alpha'})
