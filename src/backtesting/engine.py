"""
백테스트 엔진 모듈

일별 시뮬레이션 루프 구현:
- 데이터 로드/검증 (DataLoader, 루프 시작 전 전부 로드)
- 청산 확인 → 진입 시그널 평가 (미래 데이터 차단) → 진입 → 자산 기록
- 종료 시 잔여 포지션 강제 청산 → ResultAnalyzer 통계
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Hashable, List, Optional

from src.utils import DateLike, validate_date_range, validate_instrument_ids
from .candles import CandleSeries, DAILY
from .data_loader import DataLoader
from .execution import DIRECTIONS, ENTRY, EXIT, apply_slippage, calculate_commission
from .metrics import ResultAnalyzer
from .portfolio import DUPLICATE_POLICIES, END_OF_BACKTEST, Portfolio, Position
from .signals import Signal, SignalResult


SIZING_METHODS = ('risk_based', 'fixed', 'equal_weight')


class BacktestConfig:
    """백테스트 설정"""

    PARAMETER_NAMES = (
        'initial_capital', 'risk_per_trade', 'commission_rate', 'slippage_pct',
        'position_sizing_method', 'max_positions', 'trailing_stop_pct', 'trailing_stop_amount',
        'min_candles', 'max_gap_days', 'interpolate_missing', 'duplicate_policy',
        'lookback_days', 'strategy_overrides',
    )

    def __init__(self,
                 initial_capital: float = 100_000.0,  # 초기 자본금
                 risk_per_trade: float = 2.0,  # 거래당 리스크 (자본금 대비 %)
                 commission_rate: float = 0.0,  # 수수료율 (%, 진입/청산 각각)
                 slippage_pct: float = 0.0,  # 슬리피지 (%)
                 position_sizing_method: str = 'risk_based',
                 max_positions: int = 10,  # 최대 동시 보유 종목
                 trailing_stop_pct: Optional[float] = None,
                 trailing_stop_amount: Optional[float] = None,
                 min_candles: int = 50,  # 시그널 평가에 필요한 최소 일봉 수
                 max_gap_days: int = 5,  # 경고 기준 공백 일수
                 interpolate_missing: bool = False,
                 duplicate_policy: str = 'replace',
                 lookback_days: int = 0,  # from_date 이전 추가 로드 일수 (지표 워밍업용)
                 strategy_overrides: Optional[Dict[str, Any]] = None):
        """
        백테스트 설정 초기화

        Args:
            initial_capital: 초기 자본금 (양수)
            risk_per_trade: 거래당 리스크 % (0.1 ~ 10)
            commission_rate: 수수료율 % (예: 0.1 = 거래 대금의 0.1%)
            slippage_pct: 슬리피지 % (진입/청산 모두 불리한 방향)
            position_sizing_method: 시그널에 수량이 없을 때 사용
                - 'risk_based': 리스크 금액 / |진입가 - 손절가|
                - 'fixed': 리스크 금액 / 진입가
                - 'equal_weight': 초기 자본금 / max_positions / 진입가
            max_positions: 최대 동시 보유 종목 수
            trailing_stop_pct: 트레일링 스탑 % (trailing_stop_amount와 동시 사용 불가)
            trailing_stop_amount: 트레일링 스탑 고정 금액
            min_candles: 종목 검증/시그널 평가 최소 일봉 수
            max_gap_days: 이 일수를 넘는 데이터 공백은 경고
            interpolate_missing: 일봉 누락일을 flat 캔들로 채움
            duplicate_policy: Portfolio 중복 진입 정책 ('replace', 'reject', 'refund')
            lookback_days: 시그널 계산용으로 from_date 이전에 더 읽을 달력 일수
            strategy_overrides: 시그널 평가기로 전달할 전략 파라미터

        Raises:
            ValueError: 유효하지 않은 설정값
        """
        self.initial_capital = float(initial_capital)
        self.risk_per_trade = float(risk_per_trade)
        self.commission_rate = float(commission_rate)
        self.slippage_pct = float(slippage_pct)
        self.position_sizing_method = position_sizing_method
        self.max_positions = max_positions
        self.trailing_stop_pct = trailing_stop_pct
        self.trailing_stop_amount = trailing_stop_amount
        self.min_candles = min_candles
        self.max_gap_days = max_gap_days
        self.interpolate_missing = interpolate_missing
        self.duplicate_policy = duplicate_policy
        self.lookback_days = lookback_days
        self.strategy_overrides = dict(strategy_overrides or {})

        self._validate()

    def _validate(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got: {self.initial_capital}")

        if not (0.1 <= self.risk_per_trade <= 10):
            raise ValueError(f"risk_per_trade must be between 0.1 and 10 (%), got: {self.risk_per_trade}")

        if self.commission_rate < 0:
            raise ValueError(f"commission_rate must be non-negative, got: {self.commission_rate}")

        if self.slippage_pct < 0:
            raise ValueError(f"slippage_pct must be non-negative, got: {self.slippage_pct}")

        if self.position_sizing_method not in SIZING_METHODS:
            raise ValueError(
                f"position_sizing_method must be one of {SIZING_METHODS}, got: {self.position_sizing_method}"
            )

        if not isinstance(self.max_positions, int) or self.max_positions <= 0:
            raise ValueError(f"max_positions must be a positive integer, got: {self.max_positions}")

        if self.trailing_stop_pct is not None and self.trailing_stop_amount is not None:
            raise ValueError("trailing_stop_pct and trailing_stop_amount are mutually exclusive")

        if self.trailing_stop_pct is not None and not (0 < self.trailing_stop_pct < 100):
            raise ValueError(f"trailing_stop_pct must be between 0 and 100, got: {self.trailing_stop_pct}")

        if self.trailing_stop_amount is not None and self.trailing_stop_amount <= 0:
            raise ValueError(f"trailing_stop_amount must be positive, got: {self.trailing_stop_amount}")

        if not isinstance(self.min_candles, int) or self.min_candles < 1:
            raise ValueError(f"min_candles must be a positive integer, got: {self.min_candles}")

        if self.max_gap_days < 0:
            raise ValueError(f"max_gap_days must be non-negative, got: {self.max_gap_days}")

        if self.duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(
                f"duplicate_policy must be one of {DUPLICATE_POLICIES}, got: {self.duplicate_policy}"
            )

        if not isinstance(self.lookback_days, int) or self.lookback_days < 0:
            raise ValueError(f"lookback_days must be a non-negative integer, got: {self.lookback_days}")

    def to_dict(self) -> Dict[str, Any]:
        params = {name: getattr(self, name) for name in self.PARAMETER_NAMES}
        params['strategy_overrides'] = dict(self.strategy_overrides)
        return params

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> 'BacktestConfig':
        """
        dict → BacktestConfig

        Raises:
            ValueError: 알 수 없는 파라미터
        """
        unknown = set(params) - set(cls.PARAMETER_NAMES)
        if unknown:
            raise ValueError(f"Unknown backtest parameters: {sorted(unknown)}")
        return cls(**params)

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'BacktestConfig':
        """load_config() 결과(backtest/data 섹션)로 생성"""
        bt = settings['backtest']
        data = settings['data']
        return cls(
            initial_capital=bt['initial_capital'],
            risk_per_trade=bt['risk_per_trade'],
            commission_rate=bt['commission_rate'],
            slippage_pct=bt['slippage_pct'],
            position_sizing_method=bt['position_sizing_method'],
            max_positions=bt['max_positions'],
            min_candles=data['min_candles'],
            max_gap_days=data['max_gap_days'],
            interpolate_missing=data['interpolate_missing'],
        )

    def with_parameters(self, params: Dict[str, Any]) -> 'BacktestConfig':
        """
        파라미터를 덮어쓴 새 설정

        설정 필드가 아닌 키는 strategy_overrides로 전달
        """
        merged = self.to_dict()
        overrides = dict(merged['strategy_overrides'])
        for name, value in params.items():
            if name in self.PARAMETER_NAMES and name != 'strategy_overrides':
                merged[name] = value
            else:
                overrides[name] = value
        merged['strategy_overrides'] = overrides
        return BacktestConfig.from_dict(merged)

    @property
    def risk_amount(self) -> float:
        """거래당 리스크 금액"""
        return self.initial_capital * self.risk_per_trade / 100.0

    def entry_fill(self, price: float, direction: str) -> float:
        return apply_slippage(price, direction, self.slippage_pct, side=ENTRY)

    def exit_fill(self, price: float, direction: str) -> float:
        return apply_slippage(price, direction, self.slippage_pct, side=EXIT)

    def commission(self, amount: float) -> float:
        return calculate_commission(amount, self.commission_rate)

    def position_size(self, entry_price: float, stop_loss: Optional[float],
                      available_capital: float) -> int:
        """
        포지션 수량 계산 (가용 자금으로 살 수 있는 수량을 넘지 않음)

        risk_based인데 손절가가 없거나 진입가와 같으면 'fixed' 방식으로 계산
        """
        if entry_price <= 0:
            return 0

        if (self.position_sizing_method == 'risk_based'
                and stop_loss is not None and abs(entry_price - stop_loss) > 0):
            quantity = self.risk_amount / abs(entry_price - stop_loss)
        elif self.position_sizing_method == 'equal_weight':
            quantity = self.initial_capital / self.max_positions / entry_price
        else:
            quantity = self.risk_amount / entry_price

        affordable = available_capital / (entry_price * (1 + self.commission_rate / 100.0))
        return max(0, int(min(quantity, affordable)))

    def __repr__(self) -> str:
        return (f"BacktestConfig(initial_capital={self.initial_capital}, "
                f"risk_per_trade={self.risk_per_trade}, "
                f"sizing={self.position_sizing_method!r}, max_positions={self.max_positions})")


class BaseBacktester:
    """
    일별 백테스터 공통 루프

    상태: initializing (데이터 로드/검증) → running (거래일 순회)
          → finalizing (잔여 포지션 청산) → reporting (통계)

    하위 클래스 확장 지점:
    - _is_entry_day(day): 진입 평가 여부 (기본: 매일)
    - _can_exit(position, day): 청산 확인 여부 (기본: 항상)
    - _extra_results(): 결과 통계에 추가할 항목
    """

    name = 'Backtest'

    def __init__(self, instruments: List[Hashable], from_date: DateLike, to_date: DateLike,
                 evaluator, data_loader: DataLoader, config: Optional[BacktestConfig] = None):
        """
        초기화

        Args:
            instruments: 종목 식별자 리스트 (이 순서대로 진입 평가)
            from_date: 시작일
            to_date: 종료일
            evaluator: evaluate(instrument_id, daily_series, weekly_series, as_of_date, overrides)
                를 제공하는 시그널 평가기
            data_loader: 캔들 로더
            config: 백테스트 설정 (None이면 기본값)

        Raises:
            ValueError: 날짜 구간이 잘못된 경우
            TypeError: evaluator에 evaluate()가 없는 경우
        """
        if not callable(getattr(evaluator, 'evaluate', None)):
            raise TypeError("evaluator must provide an evaluate() method")

        self.from_date, self.to_date = validate_date_range(from_date, to_date)
        self.instruments = validate_instrument_ids(instruments)
        self.evaluator = evaluator
        self.data_loader = data_loader
        self.config = config or BacktestConfig()

        self._reset()

    def _reset(self) -> None:
        self.portfolio = Portfolio(
            initial_capital=self.config.initial_capital,
            duplicate_policy=self.config.duplicate_policy
        )
        self.positions: List[Position] = []  # 진입 순서
        self.errors: List[dict] = []
        self.daily_data: Dict[Hashable, CandleSeries] = {}
        self.weekly_data: Dict[Hashable, CandleSeries] = {}
        self.verbose = False

    # ------------------------------------------------------------------
    # initializing
    # ------------------------------------------------------------------

    @property
    def load_start(self) -> date:
        return self.from_date - timedelta(days=self.config.lookback_days)

    def _load_data(self) -> bool:
        """일봉 로드 + 검증 (검증 통과 종목이 없으면 False)"""
        daily = self.data_loader.load_for_instruments(
            self.instruments, DAILY, self.load_start, self.to_date,
            interpolate_missing=self.config.interpolate_missing
        )
        self.daily_data = self.data_loader.validate_data(
            daily, min_candles=self.config.min_candles, max_gap_days=self.config.max_gap_days
        )
        return bool(self.daily_data)

    def _trading_days(self) -> List[date]:
        """백테스트 구간 내 캔들이 있는 날짜 (오름차순)"""
        days = set()
        for series in self.daily_data.values():
            days.update(d for d in series.dates if self.from_date <= d <= self.to_date)
        return sorted(days)

    # ------------------------------------------------------------------
    # running
    # ------------------------------------------------------------------

    def run(self, verbose: bool = False, cancel_check: Optional[Callable[[], bool]] = None) -> Dict:
        """
        백테스트 실행

        Args:
            verbose: 진행 상황 출력 여부
            cancel_check: 거래일마다 호출, True 반환 시 중단

        Returns:
            성공: {
                'success': True,
                'results': dict (ResultAnalyzer 통계 + 거래 비용),
                'positions': List[Position] (진입 순서),
                'portfolio': Portfolio,
                'errors': List[dict] (종목-일 단위 시그널 오류),
                'config': BacktestConfig
            }
            실패: {'success': False, 'error': 'Insufficient data' | 'Cancelled'}
        """
        self._reset()
        self.verbose = verbose

        if not self._load_data():
            if verbose:
                print(f"[WARN] {self.name}: insufficient data for {len(self.instruments)} instruments")
            return {'success': False, 'error': 'Insufficient data'}

        trading_days = self._trading_days()
        if not trading_days:
            return {'success': False, 'error': 'Insufficient data'}

        if verbose:
            print(f"\n{'='*80}")
            print(f"{self.name} 시작: {self.from_date} ~ {self.to_date}")
            print(f"{'='*80}\n")
            print(f"초기 자본금: {self.config.initial_capital:,.0f}")
            print(f"종목: {len(self.daily_data)}/{len(self.instruments)} (검증 통과)")
            print(f"거래일: {len(trading_days)}일\n")

        for i, day in enumerate(trading_days):
            if cancel_check is not None and cancel_check():
                if verbose:
                    print(f"[WARN] {self.name} cancelled at {day}")
                return {'success': False, 'error': 'Cancelled'}

            self._process_day(day)

            if verbose and (i + 1) % 20 == 0:
                equity = self.portfolio.equity_curve[-1]['equity']
                total_return = (equity / self.config.initial_capital - 1) * 100
                print(f"[{day}] 자산: {equity:,.0f} ({total_return:+.1f}%) | "
                      f"포지션: {self.portfolio.position_count}/{self.config.max_positions} | "
                      f"거래: {len(self.positions)}건")

        self._close_all_positions(trading_days[-1])

        results = self._build_results()

        if verbose:
            stats = results['results']
            print(f"\n{'='*80}")
            print(f"{self.name} 완료")
            print(f"{'='*80}\n")
            print(f"최종 자본금: {stats['final_capital']:,.0f}")
            print(f"총 수익률: {stats['total_return']:+.2f}%")
            print(f"총 거래 횟수: {stats['total_trades']}건")
            if self.errors:
                print(f"[WARN] 시그널 오류: {len(self.errors)}건")

        return results

    def _process_day(self, day: date) -> None:
        """하루 처리 (순서 고정: 청산 → 진입 → 자산 기록)"""
        self._check_exits(day)

        if self._is_entry_day(day):
            self._check_entries(day)

        self._mark_equity(day)

    def _is_entry_day(self, day: date) -> bool:
        return True

    def _can_exit(self, position: Position, day: date) -> bool:
        return True

    def _check_exits(self, day: date) -> None:
        """당일 캔들이 있는 보유 종목만 청산 조건 확인"""
        for instrument_id, position in list(self.portfolio.positions.items()):
            series = self.daily_data.get(instrument_id)
            current_price = series.close_on(day) if series is not None else None
            if current_price is None:
                continue

            if not self._can_exit(position, day):
                continue

            exit_check = position.check_exit(current_price, day)
            if exit_check:
                self._close_position(instrument_id, day, exit_check['exit_price'], exit_check['exit_reason'])

    def _entry_candidates(self) -> List[Hashable]:
        """진입 평가 대상 (입력 순서 유지)"""
        return [i for i in self.instruments if i in self.daily_data]

    def _check_entries(self, day: date) -> List[Position]:
        """미보유 종목 시그널 평가 → 진입"""
        opened = []

        for instrument_id in self._entry_candidates():
            if self.portfolio.is_full(self.config.max_positions):
                break
            if self.portfolio.has_position(instrument_id):
                continue

            signal = self._evaluate_signal(instrument_id, day)
            if signal is None:
                continue

            try:
                position = self._open_position(instrument_id, signal, day)
            except Exception as e:
                self._record_error(day, instrument_id, f"{type(e).__name__}: {e}")
                continue

            if position is not None:
                opened.append(position)

        return opened

    def _has_history(self, instrument_id: Hashable, day: date) -> bool:
        """당일 캔들 존재 + day까지 최소 캔들 수 충족"""
        series = self.daily_data[instrument_id]
        if series.close_on(day) is None:
            return False
        return series.count_up_to(day) >= self.config.min_candles

    def _evaluate_signal(self, instrument_id: Hashable, day: date) -> Optional[Signal]:
        """
        시그널 평가 (day 이하 캔들만 전달 - 미래 데이터 차단!)

        평가기 예외/실패 결과는 errors에 기록하고 시그널 없음으로 처리
        시그널 날짜가 day와 다르면 폐기
        """
        if not self._has_history(instrument_id, day):
            return None

        daily_series = self.daily_data[instrument_id].up_to(day)
        weekly = self.weekly_data.get(instrument_id)
        weekly_series = weekly.up_to(day) if weekly is not None else None

        try:
            result = SignalResult.coerce(self.evaluator.evaluate(
                instrument_id=instrument_id,
                daily_series=daily_series,
                weekly_series=weekly_series,
                as_of_date=day,
                overrides=dict(self.config.strategy_overrides),
            ))
        except Exception as e:
            self._record_error(day, instrument_id, f"{type(e).__name__}: {e}")
            return None

        if not result.success:
            self._record_error(day, instrument_id, result.error or 'Signal evaluation failed')
            return None

        signal = result.signal
        if signal is None:
            return None

        if signal.signal_date is not None and signal.signal_date != day:
            return None

        if signal.instrument_id is not None and signal.instrument_id != instrument_id:
            return None

        if signal.direction not in DIRECTIONS:
            self._record_error(day, instrument_id, f"Invalid signal direction: {signal.direction}")
            return None

        return signal

    def _record_error(self, day: date, instrument_id: Hashable, error: str) -> None:
        self.errors.append({'date': day, 'instrument_id': instrument_id, 'error': error})
        if self.verbose:
            print(f"[WARN] {day} {instrument_id}: {error}")

    def _open_position(self, instrument_id: Hashable, signal: Signal, day: date) -> Optional[Position]:
        """슬리피지/수수료 적용 진입 (자금 부족 시 건너뜀, 재시도 없음)"""
        fill_price = self.config.entry_fill(signal.entry_price, signal.direction)

        quantity = signal.quantity
        if quantity is None:
            quantity = self.config.position_size(fill_price, signal.stop_loss, self.portfolio.current_capital)
        if quantity <= 0:
            return None

        position = self.portfolio.open_position(
            instrument_id=instrument_id,
            entry_date=day,
            entry_price=fill_price,
            quantity=quantity,
            direction=signal.direction,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            trailing_stop_pct=self.config.trailing_stop_pct,
            trailing_stop_amount=self.config.trailing_stop_amount,
            commission=self.config.commission(fill_price * quantity),
            slippage=abs(fill_price - signal.entry_price) * quantity,
        )

        if position is not None:
            self.positions.append(position)
        elif self.verbose:
            print(f"[INFO] {day} {instrument_id}: insufficient capital, entry skipped")

        return position

    def _close_position(self, instrument_id: Hashable, day: date, price: float,
                        reason: str) -> Optional[Position]:
        position = self.portfolio.positions[instrument_id]
        fill_price = self.config.exit_fill(price, position.direction)

        return self.portfolio.close_position(
            instrument_id=instrument_id,
            exit_date=day,
            exit_price=fill_price,
            exit_reason=reason,
            commission=self.config.commission(fill_price * position.quantity),
            slippage=abs(fill_price - price) * position.quantity,
        )

    def _mark_equity(self, day: date) -> None:
        """보유 종목을 day 이하 마지막 종가로 평가해 자산 곡선 기록"""
        prices = {}
        for instrument_id in self.portfolio.positions:
            series = self.daily_data.get(instrument_id)
            price = series.last_close_up_to(day) if series is not None else None
            if price is not None:
                prices[instrument_id] = price

        self.portfolio.update_equity(day, prices)

    # ------------------------------------------------------------------
    # finalizing / reporting
    # ------------------------------------------------------------------

    def _close_all_positions(self, last_day: date) -> None:
        """잔여 포지션을 마지막 종가(없으면 진입가)로 청산"""
        for instrument_id, position in list(self.portfolio.positions.items()):
            series = self.daily_data.get(instrument_id)
            price = series.last_close_up_to(last_day) if series is not None else None
            if price is None:
                price = position.entry_price

            self._close_position(instrument_id, last_day, price, END_OF_BACKTEST)

    def _extra_results(self) -> Dict[str, Any]:
        return {}

    def _build_results(self) -> Dict:
        analyzer = ResultAnalyzer(
            positions=self.positions,
            initial_capital=self.config.initial_capital,
            final_capital=self.portfolio.current_equity(),
            equity_curve=self.portfolio.equity_curve,
        )
        results = analyzer.analyze()

        results['total_commission'] = round(self.portfolio.total_commission, 2)
        results['total_slippage'] = round(self.portfolio.total_slippage, 2)
        results['total_trading_costs'] = round(
            self.portfolio.total_commission + self.portfolio.total_slippage, 2
        )
        results.update(self._extra_results())

        return {
            'success': True,
            'results': results,
            'positions': self.positions,
            'portfolio': self.portfolio,
            'errors': self.errors,
            'config': self.config,
        }


class SwingBacktester(BaseBacktester):
    """스윙 백테스터 (매일 청산/진입 평가)"""

    name = 'Swing Backtest'
