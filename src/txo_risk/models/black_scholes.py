"""
Black-Scholes Options Pricing Model for TXO index options
Closed-form fair value and Greeks used by the strategy payoff engine
"""

from dataclasses import dataclass, asdict
from math import exp, sqrt, pi
from typing import Dict, Union

import numpy as np

from .legs import OptionType, parse_option_type


# =============================================================================
# CORE MATHEMATICAL FUNCTIONS
# =============================================================================

# Abramowitz & Stegun 26.2.17 constants
_AS_P = 0.2316419
_AS_COEFFICIENTS = (
    0.319381530,
    -0.356563782,
    1.781477937,
    -1.821255978,
    1.330274429,
)

_INV_SQRT_2PI = 1.0 / sqrt(2.0 * pi)


def norm_cdf(x: float) -> float:
    """
    Cumulative normal distribution N(x)

    Financial Meaning: N(d1) is the hedge ratio of a call, N(d2) the
    risk-neutral probability that it finishes in-the-money.

    Uses Abramowitz & Stegun 26.2.17 on |x| (absolute error below 7.5e-8):
    the upper tail is φ(|x|) times a polynomial in t = 1 / (1 + p|x|), and
    negative inputs take the tail directly so small probabilities keep
    their relative accuracy. Saturates to 0 / 1 outside [-10, 10].
    NaN propagates.

    Args:
        x: Input value for CDF calculation

    Returns:
        Cumulative probability N(x)
    """
    if x < -10:
        return 0.0
    if x > 10:
        return 1.0

    a = abs(x)
    t = 1.0 / (1.0 + _AS_P * a)
    b1, b2, b3, b4, b5 = _AS_COEFFICIENTS
    poly = t * (b1 + t * (b2 + t * (b3 + t * (b4 + t * b5))))
    tail = _INV_SQRT_2PI * exp(-0.5 * a * a) * poly

    if x < 0:
        return tail
    return 1.0 - tail


def norm_pdf(x: float) -> float:
    """Standard normal density φ(x) = e^(-x²/2) / √(2π)"""
    return _INV_SQRT_2PI * exp(-0.5 * x * x)


def calculate_d1(S: float, K: float, T: float, r: float, sigma: float) -> float:
    """
    Calculate d1 parameter for Black-Scholes formula

    Formula: d1 = [ln(S/K) + (r + σ²/2)T] / (σ√T)

    No validation: zero volatility or non-positive prices give inf/NaN.
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        moneyness = np.log(np.float64(S) / np.float64(K))
        drift_term = (r + 0.5 * sigma * sigma) * T
        volatility_term = np.float64(sigma) * np.sqrt(np.float64(T))
        return float((moneyness + drift_term) / volatility_term)


def calculate_d2(d1: float, sigma: float, T: float) -> float:
    """d2 = d1 - σ√T"""
    with np.errstate(invalid='ignore'):
        return float(d1 - sigma * np.sqrt(np.float64(T)))


def intrinsic_value(S: float, K: float, option_type: Union[str, OptionType]) -> float:
    """Exercise value max(0, S-K) for calls, max(0, K-S) for puts"""
    if parse_option_type(option_type) is OptionType.CALL:
        return max(0.0, S - K)
    return max(0.0, K - S)


# =============================================================================
# PRICING RESULTS
# =============================================================================

@dataclass(frozen=True)
class PricingResult:
    """Fair value and sensitivities of one option unit"""
    price: float
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


# =============================================================================
# CORE BLACK-SCHOLES PRICING FUNCTIONS
# =============================================================================

def black_scholes_price(S: float, K: float, T: float, r: float, sigma: float,
                        option_type: Union[str, OptionType]) -> float:
    """
    Theoretical price of a European option

    Formulas:
        C = S·N(d1) - K·e^(-rT)·N(d2)
        P = K·e^(-rT)·N(-d2) - S·N(-d1)

    At or past expiry (T <= 0) the intrinsic value is returned.

    Args:
        S: Spot price of the index
        K: Strike price
        T: Time to expiry in years
        r: Risk-free rate (decimal)
        sigma: Volatility (decimal)
        option_type: 'call' or 'put'

    Returns:
        Option price in index points
    """
    opt_type = parse_option_type(option_type)
    if T <= 0:
        return intrinsic_value(S, K, opt_type)

    d1 = calculate_d1(S, K, T, r, sigma)
    d2 = calculate_d2(d1, sigma, T)
    pv_strike = K * exp(-r * T)

    if opt_type is OptionType.CALL:
        return S * norm_cdf(d1) - pv_strike * norm_cdf(d2)
    return pv_strike * norm_cdf(-d2) - S * norm_cdf(-d1)


def calculate_greeks(S: float, K: float, T: float, r: float, sigma: float,
                     option_type: Union[str, OptionType]) -> Dict[str, float]:
    """
    Analytical delta, gamma, theta and vega

    Conventions:
    - theta is per calendar day (annual theta / 365)
    - vega is per one volatility percentage point (/ 100)
    - gamma and vega do not depend on the option type

    All Greeks are zero when T <= 0.
    """
    if T <= 0:
        return {'delta': 0.0, 'gamma': 0.0, 'theta': 0.0, 'vega': 0.0}

    opt_type = parse_option_type(option_type)
    d1 = calculate_d1(S, K, T, r, sigma)
    d2 = calculate_d2(d1, sigma, T)

    nd1 = norm_cdf(d1)
    nd2 = norm_cdf(d2)
    phi_d1 = norm_pdf(d1)
    sqrt_t = sqrt(T)

    with np.errstate(divide='ignore', invalid='ignore'):
        decay = -(np.float64(S) * sigma * phi_d1) / (2.0 * sqrt_t)
        carry = r * K * exp(-r * T)

        if opt_type is OptionType.CALL:
            delta = nd1
            theta = (decay - carry * nd2) / 365.0
        else:
            delta = nd1 - 1.0
            theta = (decay + carry * (1.0 - nd2)) / 365.0

        gamma = phi_d1 / (np.float64(S) * sigma * sqrt_t)
        vega = S * sqrt_t * phi_d1 / 100.0

    return {
        'delta': float(delta),
        'gamma': float(gamma),
        'theta': float(theta),
        'vega': float(vega),
    }


def price_and_greeks(spot: float, strike: float, time_years: float, rate: float,
                     vol: float, option_type: Union[str, OptionType]) -> PricingResult:
    """
    Price one option and compute its Greeks in a single call

    Inputs are not validated; callers pass positive spot, strike and
    volatility. Degenerate inputs yield NaN/inf rather than an exception.
    """
    price = black_scholes_price(spot, strike, time_years, rate, vol, option_type)
    return PricingResult(price=float(price), **calculate_greeks(spot, strike, time_years, rate, vol, option_type))


def verify_put_call_parity(call_price: float, put_price: float, S: float, K: float,
                           T: float, r: float, tolerance: float = 1e-3) -> Dict[str, float]:
    """
    Check C - P = S - K·e^(-rT)

    Returns:
        Dictionary with both sides, their difference and a pass flag
    """
    left_side = call_price - put_price
    right_side = S - K * exp(-r * T)
    parity_difference = abs(left_side - right_side)

    return {
        'call_minus_put': left_side,
        'spot_minus_pv_strike': right_side,
        'parity_difference': parity_difference,
        'parity_holds': parity_difference < tolerance,
    }
