"""
Monte Carlo 시뮬레이션 모듈

실현된 거래 손익을 복원 추출(with replacement)로 재표본해 최종 자본 분포를 만들고,
신뢰 구간 / 최악 시나리오 / 손실 확률을 계산합니다.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .portfolio import Position


DEFAULT_SIMULATIONS = 1000
CONFIDENCE_LEVELS = (0.90, 0.95, 0.99)
LARGE_DRAWDOWN_PCT = 20.0
WORST_CASE_FRACTION = 0.05


def _percentile(values: np.ndarray, q: float) -> float:
    """정렬 기준 ceil(q × (n-1)) 번째 값 (보간 없음)"""
    return float(np.percentile(values, q * 100, method='higher'))


class MonteCarloSimulator:
    """거래 순서/구성 재표본 시뮬레이터"""

    def __init__(self, positions: List[Position], initial_capital: float,
                 simulations: int = DEFAULT_SIMULATIONS,
                 confidence_levels: Sequence[float] = CONFIDENCE_LEVELS,
                 seed: Optional[int] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Args:
            positions: 청산된 포지션 리스트 (손익만 사용)
            initial_capital: 초기 자본금
            simulations: 시뮬레이션 횟수
            confidence_levels: 신뢰 수준 (예: 0.95 → 2.5% ~ 97.5% 구간)
            seed: 난수 seed (rng 미지정 시)
            rng: numpy Generator 직접 주입 (테스트용)

        Raises:
            ValueError: simulations/confidence_levels 값이 잘못된 경우
        """
        if not isinstance(simulations, int) or simulations <= 0:
            raise ValueError(f"simulations must be a positive integer, got: {simulations}")
        for level in confidence_levels:
            if not (0 < level < 1):
                raise ValueError(f"confidence level must be between 0 and 1, got: {level}")

        self.positions = list(positions)
        self.initial_capital = float(initial_capital)
        self.simulations = simulations
        self.confidence_levels = list(confidence_levels)
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self.simulation_results: Dict[str, np.ndarray] = {}

    @classmethod
    def from_settings(cls, positions: List[Position], initial_capital: float,
                      settings: Dict[str, Any]) -> 'MonteCarloSimulator':
        """load_config() 결과(monte_carlo 섹션)로 생성"""
        mc = settings['monte_carlo']
        return cls(
            positions,
            initial_capital,
            simulations=mc['simulations'],
            confidence_levels=mc['confidence_levels'],
            seed=mc['seed'],
        )

    def run(self, verbose: bool = False) -> Dict:
        """
        시뮬레이션 실행

        Returns:
            성공: {
                'success': True,
                'simulations': int,
                'initial_capital': float,
                'results': 요약 통계 (mean/std/min/max),
                'probability_distributions': 수익률/MDD 사분위,
                'confidence_intervals': {level: {final_capital, total_return, max_drawdown}},
                'worst_case_scenarios': 하위 5% + 손실 확률 + 대형 낙폭 확률,
            }
            실패: {'success': False, 'error': 'No positions provided'}
        """
        if not self.positions:
            return {'success': False, 'error': 'No positions provided'}

        self.simulation_results = self._simulate()
        worst_case = self.worst_case_scenarios()

        if verbose:
            summary = self.summary_statistics()
            print(f"\n{'='*80}")
            print(f"Monte Carlo 시뮬레이션 완료: {self.simulations}회 / 거래 {len(self.positions)}건")
            print(f"평균 수익률: {summary['mean_total_return']:+.2f}% | "
                  f"평균 MDD: {summary['mean_max_drawdown']:.2f}% | "
                  f"손실 확률: {worst_case['probability_of_loss']:.1f}%")
            print(f"{'='*80}\n")

        return {
            'success': True,
            'simulations': self.simulations,
            'initial_capital': self.initial_capital,
            'results': self.summary_statistics(),
            'probability_distributions': self.probability_distributions(),
            'confidence_intervals': self.confidence_intervals(),
            'worst_case_scenarios': worst_case,
        }

    def _simulate(self) -> Dict[str, np.ndarray]:
        """
        복원 추출 손익 경로 생성 (simulations × 거래 수)

        Returns:
            {'final_capital', 'total_return', 'max_drawdown', 'win_rate'} 시뮬레이션별 배열
        """
        pnls = np.array([p.calculate_pnl() for p in self.positions], dtype=float)
        n_trades = len(pnls)

        samples = pnls[self.rng.integers(0, n_trades, size=(self.simulations, n_trades))]

        equity = self.initial_capital + np.cumsum(samples, axis=1)
        equity = np.hstack([np.full((self.simulations, 1), self.initial_capital), equity])

        running_peak = np.maximum.accumulate(equity, axis=1)
        with np.errstate(divide='ignore', invalid='ignore'):
            drawdowns = np.where(running_peak > 0, (running_peak - equity) / running_peak * 100, 0.0)
        max_drawdown = drawdowns.max(axis=1)

        final_capital = equity[:, -1]
        if self.initial_capital:
            total_return = (final_capital - self.initial_capital) / self.initial_capital * 100
        else:
            total_return = np.zeros(self.simulations)

        win_rate = (samples > 0).sum(axis=1) / n_trades * 100

        return {
            'final_capital': np.round(final_capital, 2),
            'total_return': np.round(total_return, 2),
            'max_drawdown': np.round(max_drawdown, 2),
            'win_rate': np.round(win_rate, 2),
        }

    def _stats(self, key: str) -> Dict[str, float]:
        values = self.simulation_results[key]
        std_dev = float(np.std(values, ddof=1)) if len(values) > 1 else 0.0
        return {
            'mean': round(float(np.mean(values)), 2),
            'std_dev': round(std_dev, 2),
            'min': float(np.min(values)),
            'max': float(np.max(values)),
        }

    def summary_statistics(self) -> Dict[str, float]:
        """시뮬레이션 지표별 평균/표준편차(n-1)/최소/최대"""
        summary = {}
        for key in ('final_capital', 'total_return', 'max_drawdown', 'win_rate'):
            for stat, value in self._stats(key).items():
                summary[f'{stat}_{key}'] = value
        return summary

    def probability_distributions(self) -> Dict[str, Dict[str, float]]:
        """수익률/MDD 분포 사분위"""
        distributions = {}
        for name, key in (('returns', 'total_return'), ('drawdowns', 'max_drawdown')):
            values = self.simulation_results[key]
            stats = self._stats(key)
            distributions[name] = {
                'min': stats['min'],
                'q25': _percentile(values, 0.25),
                'median': _percentile(values, 0.50),
                'q75': _percentile(values, 0.75),
                'max': stats['max'],
                'mean': stats['mean'],
                'std_dev': stats['std_dev'],
            }
        return distributions

    def confidence_intervals(self) -> Dict[float, Dict[str, Dict[str, float]]]:
        """
        신뢰 구간 (양측)

        level 0.95 → 하한 2.5 백분위, 상한 97.5 백분위
        """
        intervals = {}
        for level in self.confidence_levels:
            alpha = 1 - level
            lower_q = alpha / 2
            upper_q = 1 - alpha / 2

            interval = {}
            for key in ('final_capital', 'total_return', 'max_drawdown'):
                values = self.simulation_results[key]
                lower = _percentile(values, lower_q)
                upper = _percentile(values, upper_q)
                interval[key] = {'lower': lower, 'upper': upper, 'range': round(upper - lower, 2)}
            intervals[level] = interval

        return intervals

    def worst_case_scenarios(self) -> Dict:
        """하위 5% 시나리오 + 손실/대형 낙폭 확률 (%)"""
        returns = self.simulation_results['total_return']
        drawdowns = self.simulation_results['max_drawdown']

        worst_count = int(np.ceil(len(returns) * WORST_CASE_FRACTION))
        worst_idx = np.argsort(returns, kind='stable')[:worst_count]

        return {
            'worst_5_percent': {
                'count': worst_count,
                'mean_return': round(float(returns[worst_idx].mean()), 2),
                'mean_drawdown': round(float(drawdowns[worst_idx].mean()), 2),
                'worst_return': float(returns[worst_idx].min()),
                'worst_drawdown': float(drawdowns[worst_idx].max()),
                'worst_final_capital': float(self.simulation_results['final_capital'][worst_idx].min()),
            },
            'probability_of_loss': round(float((returns < 0).mean() * 100), 2),
            'probability_of_large_drawdown': round(float((drawdowns > LARGE_DRAWDOWN_PCT).mean() * 100), 2),
        }
