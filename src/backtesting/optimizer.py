"""
파라미터 최적화 모듈

GridOptimizer 클래스:
- 파라미터 범위의 모든 조합(데카르트 곱)을 백테스트 (단일 기간 또는 Walk-Forward 검증 성과)
- 최적화 지표 기준 내림차순 정렬 + 파라미터 민감도 분석

OptunaOptimizer 클래스:
- Bayesian Optimization (TPE, seed 고정으로 재현 가능)
- MedianPruner: 절반 기간 중간 평가로 나쁜 Trial 조기 중단
- Persistent Study: study_storage 지정 시 SQLite에 Trial 누적 저장
"""

import itertools
from typing import Any, Dict, Hashable, List, Optional

from src.utils import DateLike, validate_date_range
from .engine import BacktestConfig, SwingBacktester
from .walk_forward import WalkForwardAnalyzer, WalkForwardConfig


METRICS = ('sharpe_ratio', 'sortino_ratio', 'total_return', 'annualized_return',
           'profit_factor', 'win_rate', 'composite')

# composite 지표 가중치
COMPOSITE_WEIGHTS = {
    'sharpe_ratio': 0.4,
    'total_return': 0.2,
    'win_rate': 0.2,
    'profit_factor': 0.2,
}

# Walk-Forward 집계 키 → 성과 지표 키
_WF_METRIC_KEYS = {
    'total_return': 'avg_total_return',
    'annualized_return': 'avg_annualized_return',
    'max_drawdown': 'avg_max_drawdown',
    'sharpe_ratio': 'avg_sharpe_ratio',
    'sortino_ratio': 'avg_sortino_ratio',
    'win_rate': 'avg_win_rate',
    'profit_factor': 'avg_profit_factor',
    'total_trades': 'total_trades',
}


def calculate_score(metrics: Dict, metric: str) -> float:
    """
    성과 지표 → 최적화 점수

    composite = 0.4 × sharpe + 0.2 × return + 0.2 × win_rate + 0.2 × profit_factor
    """
    if metric == 'composite':
        return sum((metrics.get(key) or 0) * weight for key, weight in COMPOSITE_WEIGHTS.items())
    return metrics.get(metric) or 0


def generate_combinations(parameter_ranges: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    파라미터 범위의 데카르트 곱

    값은 list/tuple/range (단일 값은 [값]으로 처리)
    빈 범위 dict → [] (조합 없음)

    Examples:
        >>> generate_combinations({'a': [1, 2], 'b': 5})
        [{'a': 1, 'b': 5}, {'a': 2, 'b': 5}]
    """
    if not parameter_ranges:
        return []

    names = list(parameter_ranges.keys())
    values = []
    for value in parameter_ranges.values():
        if isinstance(value, (list, tuple, range)):
            values.append(list(value))
        else:
            values.append([value])

    return [dict(zip(names, combo)) for combo in itertools.product(*values)]


# ============================================================================
# GridOptimizer
# ============================================================================

class GridOptimizer:
    """전수 탐색 파라미터 최적화 클래스"""

    def __init__(self,
                 instruments: List[Hashable],
                 from_date: DateLike,
                 to_date: DateLike,
                 evaluator,
                 data_loader,
                 parameter_ranges: Dict[str, Any],
                 base_config: Optional[BacktestConfig] = None,
                 optimization_metric: str = 'sharpe_ratio',
                 use_walk_forward: bool = True,
                 wf_config: Optional[WalkForwardConfig] = None,
                 backtester_class=SwingBacktester,
                 backtester_options: Optional[dict] = None):
        """
        Args:
            parameter_ranges: {파라미터: 값 리스트}
                BacktestConfig 필드는 설정으로, 나머지는 strategy_overrides로 전달
            optimization_metric: METRICS 중 하나
            use_walk_forward: True면 Walk-Forward 검증(out-of-sample) 평균 성과로 평가
            wf_config: Walk-Forward 설정 (None이면 rolling 90/30일)

        Raises:
            ValueError: 알 수 없는 지표 / 잘못된 날짜 구간
        """
        if optimization_metric not in METRICS:
            raise ValueError(
                f"Invalid optimization_metric: {optimization_metric}. Must be one of: {', '.join(METRICS)}"
            )

        self.instruments = list(instruments)
        self.from_date, self.to_date = validate_date_range(from_date, to_date)
        self.evaluator = evaluator
        self.data_loader = data_loader
        self.parameter_ranges = dict(parameter_ranges or {})
        self.base_config = base_config or BacktestConfig()
        self.optimization_metric = optimization_metric
        self.use_walk_forward = use_walk_forward
        self.wf_config = wf_config or WalkForwardConfig(window_type='rolling', in_sample_days=90,
                                                        out_of_sample_days=30)
        self.backtester_class = backtester_class
        self.backtester_options = dict(backtester_options or {})

        self.results: List[Dict] = []

    @classmethod
    def from_settings(cls, instruments: List[Hashable], from_date: DateLike, to_date: DateLike,
                      evaluator, data_loader, parameter_ranges: Dict[str, Any],
                      settings: Dict[str, Any], **kwargs) -> 'GridOptimizer':
        """
        load_config() 결과로 생성

        backtest/data → base_config, walk_forward → wf_config,
        optimizer.metric / optimizer.use_walk_forward → 최적화 지표 / 검증 방식
        """
        opt = settings['optimizer']
        return cls(
            instruments=instruments,
            from_date=from_date,
            to_date=to_date,
            evaluator=evaluator,
            data_loader=data_loader,
            parameter_ranges=parameter_ranges,
            base_config=BacktestConfig.from_settings(settings),
            optimization_metric=opt['metric'],
            use_walk_forward=opt['use_walk_forward'],
            wf_config=WalkForwardConfig.from_settings(settings),
            **kwargs
        )

    def test_parameters(self, params: Dict[str, Any]) -> Dict:
        """
        단일 파라미터 조합 평가

        Returns:
            {'success': True, 'metrics': dict} 또는 {'success': False}
        """
        config = self.base_config.with_parameters(params)

        if self.use_walk_forward:
            analyzer = WalkForwardAnalyzer(
                instruments=self.instruments,
                from_date=self.from_date,
                to_date=self.to_date,
                evaluator=self.evaluator,
                data_loader=self.data_loader,
                base_config=config,
                wf_config=self.wf_config,
                backtester_class=self.backtester_class,
                backtester_options=self.backtester_options,
            )
            wf_result = analyzer.run(verbose=False)
            if not wf_result['success']:
                return {'success': False}

            oos = wf_result['aggregated']['out_of_sample']
            metrics = {key: oos.get(agg_key, 0) for key, agg_key in _WF_METRIC_KEYS.items()}
            return {'success': True, 'metrics': metrics}

        backtester = self.backtester_class(
            instruments=self.instruments,
            from_date=self.from_date,
            to_date=self.to_date,
            evaluator=self.evaluator,
            data_loader=self.data_loader,
            config=config,
            **self.backtester_options
        )
        result = backtester.run(verbose=False)
        if not result['success']:
            return {'success': False}

        return {'success': True, 'metrics': result['results']}

    def run(self, verbose: bool = False) -> Dict:
        """
        전수 탐색 실행

        Returns:
            {
                'success': True,
                'best_parameters': dict | None,
                'best_metrics': dict | None,
                'all_results': [{'parameters', 'metrics', 'score'}] (점수 내림차순),
                'sensitivity_analysis': dict,
                'total_combinations': int (생성된 조합 수),
                'total_combinations_tested': int (성공한 조합 수),
            }
        """
        combinations = generate_combinations(self.parameter_ranges)
        self.results = []

        if verbose:
            print(f"\n{'='*80}")
            print(f"Grid Search: {len(combinations)}개 조합 | 지표: {self.optimization_metric} | "
                  f"Walk-Forward: {self.use_walk_forward}")
            print(f"{'='*80}\n")

        for i, params in enumerate(combinations):
            result = self.test_parameters(params)

            if verbose:
                status = (f"{self.optimization_metric}={calculate_score(result['metrics'], self.optimization_metric):.4f}"
                          if result['success'] else "[SKIP] 실패")
                print(f"[{i+1}/{len(combinations)}] {params} → {status}")

            if not result['success']:
                continue

            self.results.append({
                'parameters': params,
                'metrics': result['metrics'],
                'score': calculate_score(result['metrics'], self.optimization_metric),
            })

        # 점수 내림차순 (동점은 조합 순서 유지)
        self.results.sort(key=lambda r: -r['score'])

        best = self.results[0] if self.results else None

        if verbose and best is not None:
            print(f"\n최적 파라미터: {best['parameters']} (score={best['score']:.4f})\n")

        return {
            'success': True,
            'best_parameters': best['parameters'] if best else None,
            'best_metrics': best['metrics'] if best else None,
            'all_results': self.results,
            'sensitivity_analysis': self.sensitivity_analysis(),
            'total_combinations': len(combinations),
            'total_combinations_tested': len(self.results),
        }

    def sensitivity_analysis(self) -> Dict[str, Dict]:
        """
        파라미터 민감도

        파라미터마다:
        - values: 다른 파라미터를 최적값에 고정한 상태에서 이 파라미터 값별 점수
        - score_range: 위 점수들의 최대 - 최소
        - all_values: 값별 전체 평균 점수 (다른 파라미터 무관, 평균 내림차순)
        - best_value / best_score: all_values 1위
        """
        if not self.results:
            return {}

        best_params = self.results[0]['parameters']
        sensitivity = {}

        for name in best_params:
            others = {k: v for k, v in best_params.items() if k != name}

            # 다른 파라미터는 최적값 고정
            held = [
                {'value': r['parameters'][name], 'score': r['score']}
                for r in self.results
                if all(r['parameters'].get(k) == v for k, v in others.items())
            ]
            held_scores = [h['score'] for h in held]

            # 값별 평균
            grouped: Dict[Any, List[float]] = {}
            order: List[Any] = []
            for r in self.results:
                value = r['parameters'][name]
                key = repr(value)
                if key not in grouped:
                    grouped[key] = []
                    order.append(value)
                grouped[key].append(r['score'])

            all_values = [
                {
                    'value': value,
                    'avg_score': round(sum(grouped[repr(value)]) / len(grouped[repr(value)]), 2),
                    'count': len(grouped[repr(value)]),
                }
                for value in order
            ]
            all_values.sort(key=lambda s: -s['avg_score'])

            sensitivity[name] = {
                'best_value': all_values[0]['value'],
                'best_score': all_values[0]['avg_score'],
                'values': held,
                'score_range': round(max(held_scores) - min(held_scores), 4) if held_scores else 0.0,
                'all_values': all_values,
            }

        return sensitivity


# ============================================================================
# OptunaOptimizer 클래스 (Bayesian Optimization)
# ============================================================================

class OptunaOptimizer:
    """
    Optuna Bayesian Optimization 기반 파라미터 최적화 클래스

    파라미터 공간 형식:
        {
            'risk_per_trade':    {'type': 'float', 'low': 0.5, 'high': 5.0},
            'trailing_stop_pct': {'type': 'float', 'low': 2.0, 'high': 15.0},
            'max_positions':     {'type': 'int',   'low': 1,   'high': 20},
        }
    BacktestConfig 필드가 아닌 이름은 strategy_overrides로 전달
    """

    DEFAULT_PARAM_SPACE = {
        'risk_per_trade':    {'type': 'float', 'low': 0.5, 'high': 5.0},
        'trailing_stop_pct': {'type': 'float', 'low': 2.0, 'high': 15.0},
        'max_positions':     {'type': 'int',   'low': 1,   'high': 20},
    }

    def __init__(self,
                 instruments: List[Hashable],
                 from_date: DateLike,
                 to_date: DateLike,
                 evaluator,
                 data_loader,
                 base_config: Optional[BacktestConfig] = None,
                 backtester_class=SwingBacktester,
                 backtester_options: Optional[dict] = None,
                 study_storage: Optional[str] = None,
                 seed: Optional[int] = 42,
                 n_trials: int = 50,
                 metric: str = 'sharpe_ratio'):
        """
        Args:
            study_storage: Optuna study 저장 경로 (예: "sqlite:///data/optuna_studies.db")
                None이면 인메모리 (비지속)
            seed: TPE sampler seed (None이면 비결정적)
            n_trials, metric: optimize()에서 생략했을 때 쓰는 기본값
        """
        self.instruments = list(instruments)
        self.from_date, self.to_date = validate_date_range(from_date, to_date)
        self.evaluator = evaluator
        self.data_loader = data_loader
        self.base_config = base_config or BacktestConfig()
        self.backtester_class = backtester_class
        self.backtester_options = dict(backtester_options or {})
        self.study_storage = study_storage
        self.seed = seed
        self.n_trials = n_trials
        self.metric = metric

    @classmethod
    def from_settings(cls, instruments: List[Hashable], from_date: DateLike, to_date: DateLike,
                      evaluator, data_loader, settings: Dict[str, Any], **kwargs) -> 'OptunaOptimizer':
        """load_config() 결과로 생성 (optimizer.n_trials / optimizer.metric을 기본값으로)"""
        opt = settings['optimizer']
        return cls(
            instruments=instruments,
            from_date=from_date,
            to_date=to_date,
            evaluator=evaluator,
            data_loader=data_loader,
            base_config=BacktestConfig.from_settings(settings),
            n_trials=opt['n_trials'],
            metric=opt['metric'],
            **kwargs
        )

    def _make_study_name(self, metric: str) -> str:
        """기간+백테스터+메트릭 기반 고유 study 이름 생성"""
        sd = self.from_date.strftime('%Y%m%d')
        ed = self.to_date.strftime('%Y%m%d')
        return f"opt__{self.backtester_class.__name__}__{sd}__{ed}__{metric}"

    def _run_backtest(self, config: BacktestConfig, to_date) -> Dict:
        backtester = self.backtester_class(
            instruments=self.instruments,
            from_date=self.from_date,
            to_date=to_date,
            evaluator=self.evaluator,
            data_loader=self.data_loader,
            config=config,
            **self.backtester_options
        )
        return backtester.run(verbose=False)

    def _build_objective(self, param_space: dict, metric: str):
        """
        Optuna objective function 생성 (closure)

        MedianPruner 지원:
        - Step 0: 절반 기간 평가 → trial.report() → prune 판단
        - 통과 시: 전체 기간 평가 → 최종 값 반환
        """
        import optuna as _optuna
        _TrialPruned = _optuna.exceptions.TrialPruned

        mid_date = self.from_date + (self.to_date - self.from_date) // 2

        def objective(trial):
            # 파라미터 샘플링
            params = {}
            for name, spec in param_space.items():
                if spec['type'] == 'int':
                    params[name] = trial.suggest_int(name, int(spec['low']), int(spec['high']))
                else:
                    params[name] = trial.suggest_float(name, spec['low'], spec['high'])

            try:
                config = self.base_config.with_parameters(params)
            except ValueError:
                return float('-inf')

            # Step 0: 절반 기간 평가 → Pruning 판단
            if mid_date > self.from_date:
                half_result = self._run_backtest(config, mid_date)
                if half_result['success']:
                    intermediate = float(calculate_score(half_result['results'], metric))
                else:
                    intermediate = float('-inf')

                trial.report(intermediate, step=0)
                if trial.should_prune():
                    raise _TrialPruned()

            # 전체 기간 평가
            full_result = self._run_backtest(config, self.to_date)
            if not full_result['success']:
                return float('-inf')
            return float(calculate_score(full_result['results'], metric))

        return objective

    def optimize(self, param_space: Optional[dict] = None,
                 n_trials: Optional[int] = None,
                 metric: Optional[str] = None,
                 verbose: bool = False,
                 progress_callback=None,
                 reset: bool = False) -> Optional[dict]:
        """
        Bayesian Optimization 실행

        Args:
            param_space: 탐색 파라미터 공간 (None이면 DEFAULT_PARAM_SPACE)
            n_trials: 이번 실행에서 추가할 Trial 수 (None이면 self.n_trials)
            metric: 평가 지표, METRICS 중 하나 (None이면 self.metric)
            verbose: 진행 상황 출력 여부
            progress_callback: (current, total) 호출 콜백
            reset: True이면 저장된 study를 삭제하고 새로 시작

        Returns:
            {
                'params': 최적 파라미터,
                'config': 최적 BacktestConfig,
                metric: float,
                'total_complete': int,
                'total_pruned': int,
            }
            또는 None (완료 Trial 없음)
        """
        import optuna as _optuna
        from optuna.pruners import MedianPruner
        from optuna.samplers import TPESampler
        _optuna.logging.set_verbosity(_optuna.logging.WARNING)

        n_trials = self.n_trials if n_trials is None else n_trials
        metric = self.metric if metric is None else metric

        if metric not in METRICS:
            raise ValueError(f"Invalid metric: {metric}. Must be one of: {', '.join(METRICS)}")

        if param_space is None:
            param_space = self.DEFAULT_PARAM_SPACE

        pruner = MedianPruner(n_startup_trials=5, n_warmup_steps=0)
        sampler = TPESampler(seed=self.seed)
        study_name = self._make_study_name(metric)
        storage = self.study_storage

        if reset and storage:
            try:
                _optuna.delete_study(study_name=study_name, storage=storage)
            except KeyError:
                pass  # 저장된 study 없음

        if storage:
            study = _optuna.create_study(
                study_name=study_name,
                storage=storage,
                direction='maximize',
                sampler=sampler,
                pruner=pruner,
                load_if_exists=True,
            )
        else:
            study = _optuna.create_study(direction='maximize', sampler=sampler, pruner=pruner)

        if verbose:
            print(f"\n{'='*60}")
            print(f"Optuna Study: {study_name}")
            print(f"Trial: {n_trials}개 | 기간: {self.from_date} ~ {self.to_date} | 지표: {metric}")

        objective = self._build_objective(param_space, metric)
        trial_counter = [0]

        def _cb(study, trial):
            trial_counter[0] += 1
            if progress_callback:
                progress_callback(min(trial_counter[0], n_trials), n_trials)

        study.optimize(objective, n_trials=n_trials, show_progress_bar=False, callbacks=[_cb])

        # -inf: 백테스트 실패 또는 유효하지 않은 파라미터
        all_complete = [
            t for t in study.trials
            if t.state == _optuna.trial.TrialState.COMPLETE and t.value != float('-inf')
        ]
        total_pruned = sum(
            1 for t in study.trials
            if t.state == _optuna.trial.TrialState.PRUNED
        )

        if not all_complete:
            if verbose:
                print("\n[WARN] 완료된 Trial이 없습니다.")
            return None

        best_trial = max(all_complete, key=lambda t: t.value)
        best_params = {name: best_trial.params[name] for name in param_space if name in best_trial.params}

        if verbose:
            print(f"\n최고 {metric}: {best_trial.value:.4f}")
            param_parts = [
                f"{k}={v:.3f}" if isinstance(v, float) else f"{k}={v}"
                for k, v in best_params.items()
            ]
            print(f"최적 파라미터: {' | '.join(param_parts)}")
            print(f"{'='*60}\n")

        return {
            'params': best_params,
            'config': self.base_config.with_parameters(best_params),
            metric: best_trial.value,
            'total_complete': len(all_complete),
            'total_pruned': total_pruned,
        }
