"""
Core services shared by every outbound integration.

- rate_limiter: sliding-window admission control for ESPN calls
- circuit_breaker: pybreaker breakers guarding ESPN calls
"""
