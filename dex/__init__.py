"""
On-chain layer for the cross-chain arbitrage bot: concentrated-liquidity pool
reads, quoter calls, opportunity math and swap execution.
"""
