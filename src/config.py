"""
백테스트 전역 설정 파일

자본금, 리스크, 체결 비용, 데이터 품질 기준, Walk-Forward/Monte Carlo 기본값 등을 중앙 관리
CLI 오버라이드 지원 (argparse → .env → 기본값 순서)

주의: 엔진은 이 모듈을 직접 참조하지 않음.
load_config() 결과로 BacktestConfig를 만들어 생성자에 전달할 것.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional


# 기본 설정값 (Baseline)
DEFAULT_CONFIG = {
    # ============================================================================
    # 백테스트 기본 파라미터
    # ============================================================================
    'backtest': {
        # 초기 자본금
        'initial_capital': 100_000.0,

        # 거래당 리스크 (자본금 대비 %, 0.1 ~ 10)
        'risk_per_trade': 2.0,

        # 수수료 (%, 진입/청산 각각 부과)
        'commission_rate': 0.0,

        # 슬리피지 (%, 불리한 방향으로 체결가 조정)
        'slippage_pct': 0.0,

        # 포지션 크기 산정 방식 ('risk_based', 'fixed', 'equal_weight')
        'position_sizing_method': 'risk_based',

        # 최대 동시 보유 종목 수
        'max_positions': 10,
    },

    # ============================================================================
    # 데이터 품질 기준
    # ============================================================================
    'data': {
        # 최소 캔들 수 (미만이면 종목 제외)
        'min_candles': 50,

        # 허용 최대 갭 (일, 초과 시 경고)
        'max_gap_days': 5,

        # 일봉 누락일 보간 여부
        'interpolate_missing': False,
    },

    # ============================================================================
    # Walk-Forward Analysis
    # ============================================================================
    'walk_forward': {
        'window_type': 'rolling',  # 'rolling' 또는 'expanding'
        'in_sample_days': 90,
        'out_of_sample_days': 30,
        'workers': 1,
    },

    # ============================================================================
    # 파라미터 최적화
    # ============================================================================
    'optimizer': {
        'metric': 'sharpe_ratio',
        'use_walk_forward': True,
        'n_trials': 50,
    },

    # ============================================================================
    # Monte Carlo
    # ============================================================================
    'monte_carlo': {
        'simulations': 1000,
        'confidence_levels': [0.90, 0.95, 0.99],
        'seed': None,
    },
}

VALID_SIZING_METHODS = ['risk_based', 'fixed', 'equal_weight']
VALID_WINDOW_TYPES = ['rolling', 'expanding']
VALID_METRICS = ['sharpe_ratio', 'sortino_ratio', 'total_return', 'annualized_return',
                 'profit_factor', 'win_rate', 'composite']

# Walk-Forward 학습/검증 구간 최소 길이 (달력 일수)
MIN_WINDOW_DAYS = 2


def load_config(env_file: Optional[str] = '.env',
                cli_overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    3계층 설정 로딩 (우선순위: CLI > .env > 기본값)

    Args:
        env_file: 환경변수 파일 경로 (.env)
        cli_overrides: CLI 인자로 전달된 오버라이드 (argparse의 vars(args))

    Returns:
        병합된 최종 설정 딕셔너리

    Example:
        >>> parser.add_argument('--capital', type=float)
        >>> args = parser.parse_args()
        >>> config = load_config(cli_overrides=vars(args))
    """
    import copy

    # 1) 기본값 복사
    config = copy.deepcopy(DEFAULT_CONFIG)

    # 2) .env 파일 로드 (존재할 경우)
    if env_file and os.path.exists(env_file):
        from dotenv import load_dotenv
        load_dotenv(env_file)

    # 환경변수 매핑 (예: BACKTEST_INITIAL_CAPITAL=500000)
    _apply_env_overrides(config)

    # 3) CLI 오버라이드 적용
    if cli_overrides:
        _apply_cli_overrides(config, cli_overrides)

    # 4) 설정값 검증
    try:
        _validate_config(config)
    except ValueError as e:
        print(f"[ERROR] Configuration validation failed: {e}")
        raise

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    """환경변수 → config 병합 (설정된 항목만)"""
    if os.getenv('BACKTEST_INITIAL_CAPITAL'):
        config['backtest']['initial_capital'] = float(os.getenv('BACKTEST_INITIAL_CAPITAL'))

    if os.getenv('BACKTEST_RISK_PER_TRADE'):
        config['backtest']['risk_per_trade'] = float(os.getenv('BACKTEST_RISK_PER_TRADE'))

    if os.getenv('BACKTEST_COMMISSION_RATE'):
        config['backtest']['commission_rate'] = float(os.getenv('BACKTEST_COMMISSION_RATE'))

    if os.getenv('BACKTEST_SLIPPAGE_PCT'):
        config['backtest']['slippage_pct'] = float(os.getenv('BACKTEST_SLIPPAGE_PCT'))

    if os.getenv('BACKTEST_MIN_CANDLES'):
        config['data']['min_candles'] = int(os.getenv('BACKTEST_MIN_CANDLES'))


def _apply_cli_overrides(config: Dict[str, Any], cli_args: Dict[str, Any]) -> None:
    """
    CLI 인자를 config 딕셔너리에 병합

    지원하는 오버라이드:
    - --capital → backtest.initial_capital
    - --risk → backtest.risk_per_trade
    - --commission → backtest.commission_rate
    - --slippage → backtest.slippage_pct
    - --sizing → backtest.position_sizing_method
    - --max-positions → backtest.max_positions
    - --min-candles → data.min_candles
    - --max-gap-days → data.max_gap_days
    - --interpolate → data.interpolate_missing
    - --window-type, --in-sample-days, --out-of-sample-days, --workers → walk_forward.*
    - --metric, --n-trials → optimizer.*
    - --simulations, --seed → monte_carlo.*
    """
    mapping = {
        'capital': ('backtest', 'initial_capital'),
        'risk': ('backtest', 'risk_per_trade'),
        'commission': ('backtest', 'commission_rate'),
        'slippage': ('backtest', 'slippage_pct'),
        'sizing': ('backtest', 'position_sizing_method'),
        'max_positions': ('backtest', 'max_positions'),
        'min_candles': ('data', 'min_candles'),
        'max_gap_days': ('data', 'max_gap_days'),
        'interpolate': ('data', 'interpolate_missing'),
        'window_type': ('walk_forward', 'window_type'),
        'in_sample_days': ('walk_forward', 'in_sample_days'),
        'out_of_sample_days': ('walk_forward', 'out_of_sample_days'),
        'workers': ('walk_forward', 'workers'),
        'metric': ('optimizer', 'metric'),
        'n_trials': ('optimizer', 'n_trials'),
        'simulations': ('monte_carlo', 'simulations'),
        'seed': ('monte_carlo', 'seed'),
    }

    for arg_name, (section, key) in mapping.items():
        value = cli_args.get(arg_name)
        if value is not None:
            config[section][key] = value


def _validate_config(config: Dict[str, Any]) -> None:
    """
    설정값 검증 (입력 오류 방지)

    Args:
        config: 검증할 설정 딕셔너리

    Raises:
        ValueError: 유효하지 않은 설정값
    """
    bt = config['backtest']

    # 1. 자본금
    if bt['initial_capital'] <= 0:
        raise ValueError(
            f"initial_capital must be positive, got {bt['initial_capital']}"
        )

    # 2. 거래당 리스크
    if not (0.1 <= bt['risk_per_trade'] <= 10):
        raise ValueError(
            f"risk_per_trade must be between 0.1 and 10 (%), got {bt['risk_per_trade']}"
        )

    # 3. 비용
    if bt['commission_rate'] < 0:
        raise ValueError(f"commission_rate must be non-negative, got {bt['commission_rate']}")

    if bt['slippage_pct'] < 0:
        raise ValueError(f"slippage_pct must be non-negative, got {bt['slippage_pct']}")

    # 4. 포지션 크기 산정 방식
    if bt['position_sizing_method'] not in VALID_SIZING_METHODS:
        raise ValueError(
            f"Invalid position_sizing_method: '{bt['position_sizing_method']}'. "
            f"Must be one of: {', '.join(VALID_SIZING_METHODS)}"
        )

    if not isinstance(bt['max_positions'], int) or bt['max_positions'] <= 0:
        raise ValueError(f"max_positions must be a positive integer, got {bt['max_positions']}")

    # 5. 데이터 품질
    data = config['data']
    if not isinstance(data['min_candles'], int) or data['min_candles'] < 1:
        raise ValueError(f"min_candles must be a positive integer, got {data['min_candles']}")

    if data['max_gap_days'] < 0:
        raise ValueError(f"max_gap_days must be non-negative, got {data['max_gap_days']}")

    # 6. Walk-Forward
    wf = config['walk_forward']
    if wf['window_type'] not in VALID_WINDOW_TYPES:
        raise ValueError(
            f"Invalid window_type: '{wf['window_type']}'. "
            f"Must be one of: {', '.join(VALID_WINDOW_TYPES)}"
        )

    for key in ('in_sample_days', 'out_of_sample_days'):
        if not isinstance(wf[key], int) or wf[key] < MIN_WINDOW_DAYS:
            raise ValueError(f"{key} must be an integer >= {MIN_WINDOW_DAYS}, got {wf[key]}")

    if not isinstance(wf['workers'], int) or wf['workers'] <= 0:
        raise ValueError(f"workers must be a positive integer, got {wf['workers']}")

    # 7. 최적화
    opt = config['optimizer']
    metric = opt['metric']
    if metric not in VALID_METRICS:
        raise ValueError(
            f"Invalid metric: '{metric}'. Must be one of: {', '.join(VALID_METRICS)}"
        )

    if not isinstance(opt['use_walk_forward'], bool):
        raise ValueError(f"use_walk_forward must be a boolean, got {opt['use_walk_forward']}")

    if not isinstance(opt['n_trials'], int) or opt['n_trials'] <= 0:
        raise ValueError(f"n_trials must be a positive integer, got {opt['n_trials']}")

    # 8. Monte Carlo
    mc = config['monte_carlo']
    if not isinstance(mc['simulations'], int) or mc['simulations'] <= 0:
        raise ValueError(f"simulations must be a positive integer, got {mc['simulations']}")

    for level in mc['confidence_levels']:
        if not (0 < level < 1):
            raise ValueError(f"confidence level must be between 0 and 1, got {level}")


def get_project_root() -> Path:
    """프로젝트 루트 디렉토리 반환"""
    return Path(__file__).parent.parent


def get_db_path() -> Path:
    """캔들 데이터베이스 파일 경로 반환"""
    return get_project_root() / 'data' / 'processed' / 'candles.db'


# 모듈 임포트 시 기본 설정 제공
config = DEFAULT_CONFIG
