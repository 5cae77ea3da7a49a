"""
Infrastructure Module

Connection pools, the two-tier cache, the durable queue and the warm agent
pool.
"""
