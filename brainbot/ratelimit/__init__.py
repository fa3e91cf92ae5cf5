"""Daily message limits."""

from brainbot.ratelimit.limiter import DailyRateLimiter, RateLimitStatus

__all__ = ["DailyRateLimiter", "RateLimitStatus"]
