"""
백테스팅 모듈

- Position / Portfolio: 포지션 및 자본 관리
- DataLoader: 캔들 로딩, 보간, 갭 탐지, 품질 검증
- SwingBacktester / LongTermBacktester: 일별 시뮬레이션 (리밸런싱 게이트)
- ResultAnalyzer: 성과 분석
- GridOptimizer / OptunaOptimizer / WalkForwardAnalyzer: 파라미터 탐색 및 과최적화 검증
- MonteCarloSimulator: 거래 손익 재표본 분포
"""

from .candles import CandleSeries, DAILY, WEEKLY
from .portfolio import Position, Portfolio
from .data_loader import DataLoader
from .signals import Signal, SignalResult, SignalEvaluator
from .engine import BacktestConfig, BaseBacktester, SwingBacktester
from .long_term import LongTermBacktester
from .metrics import ResultAnalyzer
from .walk_forward import WalkForwardConfig, WalkForwardAnalyzer
from .optimizer import GridOptimizer, OptunaOptimizer
from .monte_carlo import MonteCarloSimulator

__all__ = [
    'CandleSeries',
    'DAILY',
    'WEEKLY',
    'Position',
    'Portfolio',
    'DataLoader',
    'Signal',
    'SignalResult',
    'SignalEvaluator',
    'BacktestConfig',
    'BaseBacktester',
    'SwingBacktester',
    'LongTermBacktester',
    'ResultAnalyzer',
    'WalkForwardConfig',
    'WalkForwardAnalyzer',
    'GridOptimizer',
    'OptunaOptimizer',
    'MonteCarloSimulator',
]
