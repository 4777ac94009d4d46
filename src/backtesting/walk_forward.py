"""
Walk-Forward Analysis 모듈

WalkForwardAnalyzer 클래스:
- 학습(in-sample)/검증(out-of-sample) 구간 분할 (rolling / expanding)
- 구간마다 백테스트 2회 (학습 → 검증), 실패한 구간은 건너뜀
- 구간 단위 병렬 실행 (multiprocessing.Pool, 결과 순서는 구간 순서 유지)
- 학습/검증 평균 성과 + 과적합 지표 (성과 저하율, 일관성 점수)
"""

from datetime import timedelta
from multiprocessing import Pool
from typing import Dict, Hashable, List, Optional

import pandas as pd

from src.utils import DateLike, validate_date_range
from .engine import BacktestConfig, SwingBacktester


WINDOW_TYPES = ('rolling', 'expanding')

# 평균을 내는 성과 지표 → 집계 키
AVERAGED_METRICS = (
    'total_return', 'annualized_return', 'max_drawdown', 'sharpe_ratio',
    'sortino_ratio', 'win_rate', 'profit_factor',
)


# ============================================================================
# 모듈 레벨 worker 함수 (구간 단위 병렬 실행)
# ============================================================================

def _run_backtest(backtester_class, backtester_options: dict, instruments: list,
                  from_date, to_date, evaluator, data_loader, config: BacktestConfig) -> dict:
    backtester = backtester_class(
        instruments=instruments,
        from_date=from_date,
        to_date=to_date,
        evaluator=evaluator,
        data_loader=data_loader,
        config=config,
        **backtester_options
    )
    return backtester.run(verbose=False)


def _run_window_worker(args: tuple) -> Dict:
    """
    Walk-Forward 단일 구간: 학습 기간 백테스트 → 검증 기간 백테스트

    multiprocessing.Pool에서 호출하므로 모듈 레벨에 정의 (pickle 가능)
    evaluator/data_loader도 pickle 가능해야 함

    Args:
        args: (window_index, window, instruments, evaluator, data_loader,
               config_dict, backtester_class, backtester_options)

    Returns:
        {'window_index', 'in_sample': results|None, 'out_of_sample': results|None}
    """
    (window_index, window, instruments, evaluator, data_loader,
     config_dict, backtester_class, backtester_options) = args

    config = BacktestConfig.from_dict(config_dict)
    outcome = {'window_index': window_index, 'in_sample': None, 'out_of_sample': None}

    in_sample = _run_backtest(
        backtester_class, backtester_options, instruments,
        window['in_sample_start'], window['in_sample_end'], evaluator, data_loader, config
    )
    if not in_sample['success']:
        return outcome
    outcome['in_sample'] = in_sample['results']

    # 검증 구간은 초기 자본금에서 다시 시작
    out_of_sample = _run_backtest(
        backtester_class, backtester_options, instruments,
        window['out_of_sample_start'], window['out_of_sample_end'], evaluator, data_loader, config
    )
    if out_of_sample['success']:
        outcome['out_of_sample'] = out_of_sample['results']

    return outcome


# ============================================================================
# WalkForwardConfig
# ============================================================================

class WalkForwardConfig:
    """Walk-Forward Analysis 설정"""

    def __init__(self,
                 window_type: str = 'rolling',
                 in_sample_days: int = 90,
                 out_of_sample_days: int = 30,
                 workers: int = 1):
        """
        Args:
            window_type: 'rolling' (고정 길이 학습 구간 이동) 또는
                'expanding' (학습 구간 시작을 from_date에 고정하고 확장)
            in_sample_days: 학습 기간 (달력 일수, 2 이상)
            out_of_sample_days: 검증 기간 (달력 일수, 2 이상)
            workers: 병렬 처리 worker 수 (구간 단위)

        Raises:
            ValueError: 유효하지 않은 설정값
        """
        if window_type not in WINDOW_TYPES:
            raise ValueError(
                f"Invalid window_type: {window_type}. Must be one of: {', '.join(WINDOW_TYPES)}"
            )
        for name, days in (('in_sample_days', in_sample_days), ('out_of_sample_days', out_of_sample_days)):
            if not isinstance(days, int) or days < 2:
                raise ValueError(f"{name} must be an integer >= 2, got: {days}")
        if not isinstance(workers, int) or workers < 1:
            raise ValueError(f"workers must be a positive integer, got: {workers}")

        self.window_type = window_type
        self.in_sample_days = in_sample_days
        self.out_of_sample_days = out_of_sample_days
        self.workers = workers

    @classmethod
    def from_settings(cls, settings: dict) -> 'WalkForwardConfig':
        """load_config() 결과(walk_forward 섹션)로 생성"""
        wf = settings['walk_forward']
        return cls(
            window_type=wf['window_type'],
            in_sample_days=wf['in_sample_days'],
            out_of_sample_days=wf['out_of_sample_days'],
            workers=wf['workers'],
        )


# ============================================================================
# WalkForwardAnalyzer
# ============================================================================

class WalkForwardAnalyzer:
    """Walk-Forward Analysis 클래스"""

    def __init__(self,
                 instruments: List[Hashable],
                 from_date: DateLike,
                 to_date: DateLike,
                 evaluator,
                 data_loader,
                 base_config: Optional[BacktestConfig] = None,
                 wf_config: Optional[WalkForwardConfig] = None,
                 backtester_class=SwingBacktester,
                 backtester_options: Optional[dict] = None):
        """
        Args:
            instruments: 종목 식별자 리스트
            from_date: 전체 분석 시작일
            to_date: 전체 분석 종료일
            evaluator: 시그널 평가기
            data_loader: 캔들 로더
            base_config: 구간 백테스트 공통 설정
            wf_config: Walk-Forward 설정 (None이면 기본값)
            backtester_class: SwingBacktester 또는 LongTermBacktester
            backtester_options: backtester_class 추가 인자 (예: rebalance_frequency)

        Raises:
            ValueError: 날짜 구간이 잘못된 경우
        """
        self.instruments = list(instruments)
        self.from_date, self.to_date = validate_date_range(from_date, to_date)
        self.evaluator = evaluator
        self.data_loader = data_loader
        self.base_config = base_config or BacktestConfig()
        self.wf_config = wf_config or WalkForwardConfig()
        self.backtester_class = backtester_class
        self.backtester_options = dict(backtester_options or {})

        self._windows: List[Dict] = []
        self._outcomes: List[Dict] = []

    def generate_windows(self) -> List[Dict]:
        """
        학습/검증 구간 분할

        - rolling: 학습 구간 길이 고정, 검증 기간만큼 이동
        - expanding: 학습 구간 시작은 from_date 고정, 검증 구간 직전까지 확장
        검증 구간이 to_date를 넘으면 중단

        Returns:
            [{'in_sample_start', 'in_sample_end', 'out_of_sample_start', 'out_of_sample_end'}]
        """
        is_days = self.wf_config.in_sample_days
        oos_days = self.wf_config.out_of_sample_days

        windows = []
        current = self.from_date

        while True:
            in_sample_end = current + timedelta(days=is_days - 1)
            out_of_sample_start = in_sample_end + timedelta(days=1)
            out_of_sample_end = out_of_sample_start + timedelta(days=oos_days - 1)

            if out_of_sample_end > self.to_date:
                break

            if self.wf_config.window_type == 'expanding':
                in_sample_start = self.from_date
            else:
                in_sample_start = current

            windows.append({
                'in_sample_start': in_sample_start,
                'in_sample_end': in_sample_end,
                'out_of_sample_start': out_of_sample_start,
                'out_of_sample_end': out_of_sample_end,
            })
            current = current + timedelta(days=oos_days)

        return windows

    def run(self, verbose: bool = False) -> Dict:
        """
        Walk-Forward 전체 실행

        workers > 1이면 구간 단위 병렬 실행 (multiprocessing.Pool)

        Returns:
            성공: {
                'success': True,
                'windows': List[dict],
                'in_sample_results': [{'window_index', 'start_date', 'end_date', 'results'}],
                'out_of_sample_results': [...],
                'aggregated': {'in_sample': dict, 'out_of_sample': dict},
                'comparison': dict,
            }
            실패: {'success': False, 'error': 'No valid windows generated'}
        """
        windows = self.generate_windows()
        self._windows = windows

        if not windows:
            if verbose:
                print("[WARN] 유효한 학습/검증 구간이 없습니다. "
                      "전체 기간이 in_sample_days + out_of_sample_days보다 짧습니다.")
            return {'success': False, 'error': 'No valid windows generated'}

        if verbose:
            print(f"\n{'='*80}")
            print(f"Walk-Forward Analysis 시작 ({self.wf_config.window_type})")
            print(f"{'='*80}")
            print(f"전체 기간: {self.from_date} ~ {self.to_date}")
            print(f"학습: {self.wf_config.in_sample_days}일 | 검증: {self.wf_config.out_of_sample_days}일")
            print(f"Workers: {self.wf_config.workers} | 총 {len(windows)}개 구간\n")

        config_dict = self.base_config.to_dict()
        args_list = [
            (i, window, self.instruments, self.evaluator, self.data_loader,
             config_dict, self.backtester_class, self.backtester_options)
            for i, window in enumerate(windows)
        ]

        if self.wf_config.workers > 1:
            with Pool(processes=self.wf_config.workers) as pool:
                outcomes = pool.map(_run_window_worker, args_list)
        else:
            outcomes = []
            for args in args_list:
                outcome = _run_window_worker(args)
                outcomes.append(outcome)
                if verbose:
                    window = windows[outcome['window_index']]
                    oos = outcome['out_of_sample']
                    status = (f"검증 수익률 {oos['total_return']:+.2f}% | 거래 {oos['total_trades']}건"
                              if oos else "[SKIP] 백테스트 실패")
                    print(f"[{outcome['window_index'] + 1}/{len(windows)}] "
                          f"검증: {window['out_of_sample_start']}~{window['out_of_sample_end']} → {status}")

        self._outcomes = outcomes

        in_sample_results = []
        out_of_sample_results = []
        for outcome in outcomes:
            window = windows[outcome['window_index']]
            if outcome['in_sample'] is not None:
                in_sample_results.append({
                    'window_index': outcome['window_index'],
                    'start_date': window['in_sample_start'],
                    'end_date': window['in_sample_end'],
                    'results': outcome['in_sample'],
                })
            if outcome['out_of_sample'] is not None:
                out_of_sample_results.append({
                    'window_index': outcome['window_index'],
                    'start_date': window['out_of_sample_start'],
                    'end_date': window['out_of_sample_end'],
                    'results': outcome['out_of_sample'],
                })

        aggregated = {
            'in_sample': self.aggregate_period_results(in_sample_results),
            'out_of_sample': self.aggregate_period_results(out_of_sample_results),
        }

        if verbose:
            oos_agg = aggregated['out_of_sample']
            print(f"\n{'='*80}")
            print(f"Walk-Forward Analysis 완료: {len(out_of_sample_results)}/{len(windows)} 구간 성공")
            if oos_agg:
                print(f"검증 평균 수익률: {oos_agg['avg_total_return']:+.2f}% | "
                      f"평균 샤프: {oos_agg['avg_sharpe_ratio']:.2f}")
            print(f"{'='*80}\n")

        return {
            'success': True,
            'windows': windows,
            'in_sample_results': in_sample_results,
            'out_of_sample_results': out_of_sample_results,
            'aggregated': aggregated,
            'comparison': self.compare(in_sample_results, out_of_sample_results, aggregated),
        }

    # ============================================================================
    # 집계 / 비교
    # ============================================================================

    @staticmethod
    def _average(period_results: List[Dict], key: str) -> float:
        values = [r['results'][key] for r in period_results if r['results'].get(key) is not None]
        if not values:
            return 0.0
        return round(sum(values) / len(values), 2)

    @classmethod
    def aggregate_period_results(cls, period_results: List[Dict]) -> Dict:
        """구간 결과 평균 (구간이 없으면 빈 dict)"""
        if not period_results:
            return {}

        aggregated = {f'avg_{key}': cls._average(period_results, key) for key in AVERAGED_METRICS}
        aggregated['total_trades'] = sum(int(r['results'].get('total_trades', 0)) for r in period_results)
        aggregated['avg_trades_per_period'] = cls._average(period_results, 'total_trades')
        aggregated['periods_count'] = len(period_results)
        return aggregated

    @staticmethod
    def _degradation(in_sample_value: Optional[float], out_of_sample_value: Optional[float]) -> float:
        """학습 대비 검증 성과 저하율 (%)"""
        if not in_sample_value or out_of_sample_value is None:
            return 0.0
        return round((in_sample_value - out_of_sample_value) / abs(in_sample_value) * 100, 2)

    @staticmethod
    def _increase(in_sample_value: Optional[float], out_of_sample_value: Optional[float]) -> float:
        """학습 대비 검증 증가율 (%)"""
        if not in_sample_value or out_of_sample_value is None:
            return 0.0
        return round((out_of_sample_value - in_sample_value) / abs(in_sample_value) * 100, 2)

    @staticmethod
    def consistency_score(in_sample_results: List[Dict], out_of_sample_results: List[Dict]) -> float:
        """
        학습/검증 수익률 일관성 점수 (0~100, 같은 구간끼리 비교)

        - 검증 < 학습 × 0.5 → 0
        - 검증 ≥ 학습 × 0.8 → 100
        - 그 사이 → 선형 보간
        """
        oos_by_window = {r['window_index']: r for r in out_of_sample_results}

        scores = []
        for is_result in in_sample_results:
            oos_result = oos_by_window.get(is_result['window_index'])
            if oos_result is None:
                continue

            is_return = is_result['results'].get('total_return') or 0.0
            oos_return = oos_result['results'].get('total_return') or 0.0

            if oos_return < is_return * 0.5:
                scores.append(0.0)
            elif oos_return >= is_return * 0.8:
                scores.append(100.0)
            else:
                ratio = (oos_return - is_return * 0.5) / (is_return * 0.3)
                scores.append(min(max(ratio * 100, 0.0), 100.0))

        if not scores:
            return 0.0
        return round(sum(scores) / len(scores), 2)

    def compare(self, in_sample_results: List[Dict], out_of_sample_results: List[Dict],
                aggregated: Dict) -> Dict:
        """학습 vs 검증 비교 (과적합 진단)"""
        is_agg = aggregated['in_sample']
        oos_agg = aggregated['out_of_sample']

        return {
            'return_degradation': self._degradation(
                is_agg.get('avg_total_return'), oos_agg.get('avg_total_return')),
            'sharpe_degradation': self._degradation(
                is_agg.get('avg_sharpe_ratio'), oos_agg.get('avg_sharpe_ratio')),
            'drawdown_increase': self._increase(
                is_agg.get('avg_max_drawdown'), oos_agg.get('avg_max_drawdown')),
            'win_rate_degradation': self._degradation(
                is_agg.get('avg_win_rate'), oos_agg.get('avg_win_rate')),
            'profit_factor_degradation': self._degradation(
                is_agg.get('avg_profit_factor'), oos_agg.get('avg_profit_factor')),
            'consistency_score': self.consistency_score(in_sample_results, out_of_sample_results),
        }

    def summary(self) -> pd.DataFrame:
        """
        구간별 결과 요약 DataFrame (run() 이후)

        Columns: window_index, 구간 날짜, is_/oos_ 접두사 성과 지표
        """
        if not self._outcomes:
            return pd.DataFrame()

        rows = []
        for outcome in self._outcomes:
            row = {'window_index': outcome['window_index'], **self._windows[outcome['window_index']]}
            for prefix, key in (('is', 'in_sample'), ('oos', 'out_of_sample')):
                results = outcome[key] or {}
                for metric in ('total_return', 'sharpe_ratio', 'win_rate', 'max_drawdown', 'total_trades'):
                    row[f'{prefix}_{metric}'] = results.get(metric)
            rows.append(row)

        return pd.DataFrame(rows)
